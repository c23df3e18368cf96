"""Discussion forum module.

Provides threaded topic discussions with:
- Comment trees rebuilt from flat snapshots
- Like/thank reactions with transactional toggles
- Denormalized, repairable reply counters
- Live thread views shared per topic

Note: Service and routers are not exported here to avoid circular imports.
Import directly from src.forum.service / src.forum.router when needed.
"""

from .models import (
    Category,
    Comment,
    EntityKind,
    EntityRef,
    ReactionKind,
    ReactionSet,
    Topic,
)
from .tree import ForestNode, build_comment_forest, count_forest


__all__ = [
    "Category",
    "Comment",
    "EntityKind",
    "EntityRef",
    "ForestNode",
    "ReactionKind",
    "ReactionSet",
    "Topic",
    "build_comment_forest",
    "count_forest",
]
