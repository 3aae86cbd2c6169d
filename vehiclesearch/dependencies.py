# vehiclesearch/dependencies.py
"""Process-wide service instances, handed to routes through FastAPI `Depends`."""
from functools import lru_cache

from .cache import CacheLayer, create_redis_client
from .db import SessionLocal
from .index import IndexManager, create_es_client
from .scheduler import ReindexJob, scheduler
from .services import ListingReadService, SearchService, SyncService


@lru_cache()
def get_index_manager() -> IndexManager:
    return IndexManager(create_es_client())


@lru_cache()
def get_cache() -> CacheLayer:
    return CacheLayer(create_redis_client())


def get_search_service() -> SearchService:
    return SearchService(get_index_manager(), get_cache())


def get_read_service() -> ListingReadService:
    return ListingReadService(SessionLocal, get_cache())


def get_sync_service() -> SyncService:
    return SyncService(SessionLocal, get_index_manager(), get_cache())


@lru_cache()
def get_reindex_job() -> ReindexJob:
    return ReindexJob(scheduler, get_sync_service())
