# ruff: noqa: PLW0603
"""Document store lifecycle.

Builds the configured ``ThreadStore`` at startup and closes it at
shutdown. Firestore is reached through the Firebase Admin SDK using a
service account file.
"""

from pathlib import Path

from src.config.settings import Settings, get_settings
from src.core.logging import get_logger
from src.store.base import StoreError, ThreadStore
from src.store.memory import InMemoryThreadStore


logger = get_logger(__name__)

_store: ThreadStore | None = None
_firebase_app = None


class StoreNotConfiguredError(StoreError):
    """Firestore was selected but credentials are missing or invalid."""

    def __init__(self, message: str = "Firestore is not configured") -> None:
        super().__init__(message, "store_not_configured")


def _resolve_credentials_path(settings: Settings) -> str:
    creds_path = settings.firebase_credentials_path
    if creds_path and not Path(creds_path).is_absolute():
        # Relative to the project root
        creds_path = str(Path(__file__).parent.parent.parent / creds_path)
    if not creds_path or not Path(creds_path).exists():
        raise StoreNotConfiguredError(f"Firebase credentials file not found: {creds_path}")
    return creds_path


def _init_firestore(settings: Settings) -> ThreadStore:
    global _firebase_app

    if not settings.firestore_configured:
        raise StoreNotConfiguredError

    # Lazy import to avoid loading the Google SDKs unless needed
    import firebase_admin  # noqa: PLC0415
    from firebase_admin import credentials  # noqa: PLC0415
    from google.cloud import firestore  # noqa: PLC0415

    from src.store.firestore import FirestoreThreadStore  # noqa: PLC0415

    creds_path = _resolve_credentials_path(settings)
    try:
        if _firebase_app is None:
            cred = credentials.Certificate(creds_path)
            _firebase_app = firebase_admin.initialize_app(
                cred, {"projectId": settings.firebase_project_id}
            )
        google_credentials = _firebase_app.credential.get_credential()
        client = firestore.AsyncClient(
            project=settings.firebase_project_id,
            credentials=google_credentials,
            database=settings.firestore_database,
        )
        watch_client = firestore.Client(
            project=settings.firebase_project_id,
            credentials=google_credentials,
            database=settings.firestore_database,
        )
    except Exception as e:
        logger.exception("firestore_init_failed", error=str(e))
        raise StoreNotConfiguredError(f"Failed to initialize Firestore: {e}") from e

    logger.info(
        "firestore_initialized",
        project_id=settings.firebase_project_id,
        database=settings.firestore_database,
    )
    return FirestoreThreadStore(
        client,
        watch_client,
        liveness_interval=settings.firestore_watch_liveness_seconds,
    )


async def init_store(settings: Settings | None = None) -> ThreadStore:
    """Create the configured store and remember it for ``get_store``."""
    global _store

    settings = settings or get_settings()
    if settings.store_backend == "firestore":
        _store = _init_firestore(settings)
    else:
        _store = InMemoryThreadStore()
        logger.info("memory_store_initialized")
    return _store


async def shutdown_store() -> None:
    """Close the active store."""
    global _store

    if _store is not None:
        await _store.close()
        logger.info("store_closed", backend=_store.name)
        _store = None


def get_store() -> ThreadStore | None:
    """Get the active store, if initialized."""
    return _store
