"""
Poignée unique vers les services externes (store, flux temps réel, images).

Initialisée une seule fois au démarrage par ``init_backend`` ; les tests
injectent la leur avec ``set_backend``.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from quartier.config import Settings, settings as default_settings
from quartier.db.memory import MemoryChangeStream, MemoryRowStore
from quartier.errors import ConfigurationError
from quartier.realtime.backends import BlobStore, ChangeStream, RowStore
from quartier.realtime.events import Record
from quartier.realtime.store import SyncedCollection
from quartier.utils.storage import LocalBlobStore

logger = logging.getLogger(__name__)

# Contraintes d'unicité reproduites par le store mémoire
MEMORY_UNIQUE = {
    "votes": ("proposal_id", "user_id"),
    "job_applications": ("job_id", "user_id"),
    "profiles": ("user_id",),
    "channel_secrets": ("channel_id",),
}


class ServiceStatus:
    """Bandeau global : une erreur de configuration n'est signalée qu'une fois."""

    def __init__(self):
        self.configuration_error: Optional[str] = None

    def report_configuration_error(self, message: str) -> None:
        if self.configuration_error is not None:
            return
        self.configuration_error = message
        logger.error(f"⛔ Configuration du backend invalide : {message}")

    @property
    def banner(self) -> Optional[str]:
        if self.configuration_error is None:
            return None
        return "Configuration manquante : l'application n'est pas connectée au backend."


@dataclass
class Backend:
    rows: RowStore
    changes: ChangeStream
    blobs: BlobStore
    status: ServiceStatus = field(default_factory=ServiceStatus)
    online: bool = True

    def is_online(self) -> bool:
        return self.online

    def collection(
        self,
        collection: str,
        scope: Optional[str] = None,
        sort_field: Optional[str] = None,
        fallback: Optional[List[Record]] = None,
        scope_field: str = "community_id",
        realtime: bool = True,
    ) -> SyncedCollection:
        return SyncedCollection(
            self.rows,
            self.changes,
            collection,
            scope=scope,
            sort_field=sort_field,
            fallback=fallback,
            scope_field=scope_field,
            realtime=realtime,
            is_online=self.is_online,
            status=self.status,
        )

    def open_collection(self, collection: str, **options) -> SyncedCollection:
        return self.collection(collection, **options).open()


_backend: Optional[Backend] = None


def memory_backend(config: Optional[Settings] = None, online: bool = True) -> Backend:
    config = config or default_settings
    changes = MemoryChangeStream()
    return Backend(
        rows=MemoryRowStore(changes, unique=MEMORY_UNIQUE),
        changes=changes,
        blobs=LocalBlobStore(config.UPLOAD_DIR, config.UPLOAD_URL_PREFIX),
        online=online,
    )


def init_backend(config: Optional[Settings] = None) -> Backend:
    global _backend
    if _backend is not None:
        return _backend

    config = config or default_settings
    if config.ROW_STORE == "memory":
        _backend = memory_backend(config)
        logger.info("Store en mémoire initialisé")
        return _backend

    try:
        if not config.MONGO_URL or not config.MONGO_DB:
            raise ConfigurationError("MONGO_URL / MONGO_DB manquants")
        from quartier.db.mongo import MongoChangeStream, MongoRowStore, create_client

        client = create_client(config.MONGO_URL)
        db = client[config.MONGO_DB]
        _backend = Backend(
            rows=MongoRowStore(db),
            changes=MongoChangeStream(db),
            blobs=LocalBlobStore(config.UPLOAD_DIR, config.UPLOAD_URL_PREFIX),
        )
        logger.info(f"✅ Store Mongo initialisé (base {config.MONGO_DB})")
    except ConfigurationError as e:
        # Mode dégradé : l'application démarre, hors-ligne, avec un bandeau
        _backend = memory_backend(config, online=False)
        _backend.status.report_configuration_error(str(e))
    return _backend


def get_backend() -> Backend:
    return _backend if _backend is not None else init_backend()


def set_backend(backend: Optional[Backend]) -> None:
    global _backend
    _backend = backend
