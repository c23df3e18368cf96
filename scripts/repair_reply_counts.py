"""Repair the denormalized reply counters of forum topics.

Recounts the live comments of each topic inside a transaction and
overwrites ``replyCount``. Safe to run at any time, repeatedly.

Usage:
    uv run python -m scripts.repair_reply_counts            # every topic
    uv run python -m scripts.repair_reply_counts <id> ...   # given topics
"""

import asyncio
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from src.config.settings import get_settings
from src.core.logging import configure_structlog
from src.core.store import init_store, shutdown_store
from src.forum.errors import ForumError
from src.forum.service import ForumService


logger = structlog.get_logger(__name__)


async def repair(service: ForumService, topic_ids: list[str]) -> dict[str, int]:
    """Repair the given topics, or every topic when none are given.

    Returns:
        Recounted value per topic id
    """
    if not topic_ids:
        return await service.repair_all_reply_counts()

    counts: dict[str, int] = {}
    for topic_id in topic_ids:
        try:
            counts[topic_id] = await service.repair_reply_count(topic_id)
        except ForumError as e:
            logger.error("reply_count_repair_failed", topic_id=topic_id, error=e.message)
    return counts


async def run_repair(topic_ids: list[str]) -> int:
    """Run the repair. Returns the process exit code."""
    settings = get_settings()
    configure_structlog(settings)

    logger.info(
        "repair_starting",
        store_backend=settings.store_backend,
        topics=len(topic_ids) or "all",
    )

    store = await init_store(settings)
    service = ForumService(store, settings=settings)
    try:
        counts = await repair(service, topic_ids)
        logger.info("repair_completed", repaired=len(counts))
    finally:
        await service.close()
        await shutdown_store()

    return 0 if len(counts) == len(topic_ids) or not topic_ids else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(run_repair(sys.argv[1:])))
