import logging
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from . import config
from .adapter import OfflineHTTPAdapter
from .cache import CacheStorage, CacheStoreManager, FileCacheStorage
from .mutations import FlushResult, KeyValueStore, MutationQueue
from .util import bucket_name, origin_of


logger = logging.getLogger(__name__)


class OfflineWorker:
    """
    Wires the cache, the fetch interceptor and the mutation queue together.

    Each platform signal has its own handler: `install()`, `activate()`, `sync()`, and `session()` for fetches.
    Whatever drives the application calls them when the matching event happens.
    """

    def __init__(self, storage: CacheStorage, kv_store: KeyValueStore, origin: str, version: int,
                 manifest: Sequence[str], api_routes: Sequence[str], network: Optional[requests.Session] = None,
                 app_name: str = 'callmibro') -> None:
        self.origin = origin_of(origin)
        self.manifest = list(manifest)
        self.network = network if network is not None else requests.Session()
        self.store = CacheStoreManager(storage, bucket_name(app_name, version), self.origin)
        self.queue = MutationQueue(kv_store, self.network, self.origin)
        self.adapter = OfflineHTTPAdapter(self.store, self.network, self.origin, api_routes)
        self.__kv_store = kv_store

    @property
    def cache_name(self) -> str:
        return self.store.name

    def install(self) -> None:
        logger.info('Caching static assets')
        self.store.initialize(self.manifest, self.network)

    def activate(self) -> List[str]:
        return self.store.activate_and_evict_stale()

    def register(self) -> None:
        """
        Install and activate straight away, without waiting for older versions to go idle.
        """
        self.install()
        self.activate()
        logger.info('Offline worker registered for {} with cache {}'.format(self.origin, self.cache_name))

    def session(self) -> requests.Session:
        """
        A session whose requests to the application origin go through the fetch interceptor.
        """
        session = requests.Session()
        session.mount(self.origin + '/', self.adapter)
        return session

    def sync(self, tag: str) -> Optional[FlushResult]:
        try:
            return self.queue.handle_sync(tag)
        except Exception:
            logger.exception('Error syncing {}'.format(tag))
            return None

    def close(self) -> None:
        self.store.close()
        self.__kv_store.close()
        self.network.close()


def create(directory: Optional[Path] = None, **kw) -> OfflineWorker:
    """
    Build a worker from configuration, keeping all state under `directory`.

    Keyword arguments override the matching `OfflineWorker` parameters.
    """
    directory = directory if directory is not None else config.DATA_DIR
    directory.mkdir(parents=True, exist_ok=True)
    params = dict(
        storage=FileCacheStorage(directory / 'caches'),
        kv_store=KeyValueStore(directory / config.KV_STORE_FILENAME),
        origin=config.ORIGIN,
        version=config.CACHE_VERSION,
        manifest=config.STATIC_ASSETS,
        api_routes=config.API_ROUTES,
        app_name=config.APP_NAME,
    )
    params.update(kw)
    return OfflineWorker(**params)
