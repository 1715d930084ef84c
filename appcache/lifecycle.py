import logging
from typing import Optional

from .cache import CacheManager
from .settings import settings
from .storage import StorageCache
from .tasks import RepeatingTask

logger = logging.getLogger(__name__)


class CachePersistence:
    """Ties a cache manager to its storage over the host process lifetime.

    `startup()` restores saved entries once and starts the sweep plus a
    periodic save; `shutdown()` saves a final snapshot and destroys the
    manager.
    """

    def __init__(self, manager: CacheManager, store: StorageCache, save_interval: Optional[float] = None):
        self.manager = manager
        self.store = store
        interval = settings.cleanup_interval_seconds if save_interval is None else save_interval
        self.saver = RepeatingTask(interval, self.save, name="cache-persist")

    def save(self) -> None:
        self.store.save(self.manager)

    def startup(self) -> None:
        self.store.load(self.manager)
        self.manager.start()
        self.saver.start()
        logger.info("Cache persistence started with %d entries", self.manager.get_size())

    def shutdown(self) -> None:
        self.save()
        self.saver.cancel()
        self.manager.destroy()
        logger.info("Cache persistence stopped")
