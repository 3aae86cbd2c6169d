# vehiclesearch/config.py
"""Runtime configuration read from the environment (and `.env`)."""
import os
from dotenv import load_dotenv

load_dotenv()

# record store
POSTGRES_URL = os.getenv("POSTGRES_URL")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 5))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))

# search engine
ELASTICSEARCH_URL = os.getenv("ELASTICSEARCH_URL", "http://localhost:9200")
ES_INDEX_ALIAS = os.getenv("ES_INDEX_ALIAS", "listings")
ES_INDEX_NAME = os.getenv("ES_INDEX_NAME", "listings_v1")
ES_SHARDS = int(os.getenv("ES_SHARDS", 3))
ES_REPLICAS = int(os.getenv("ES_REPLICAS", 1))
ES_REQUEST_TIMEOUT = float(os.getenv("ES_REQUEST_TIMEOUT", 10))
ES_MAX_RETRIES = int(os.getenv("ES_MAX_RETRIES", 3))
ES_WRITE_RETRIES = int(os.getenv("ES_WRITE_RETRIES", 3))
ES_RETRY_DELAY = float(os.getenv("ES_RETRY_DELAY", 0.5))


def _refresh_policy(raw):
    raw = (raw or "false").strip().lower()
    if raw == "wait_for":
        return "wait_for"
    return raw in ("1", "true", "yes")


ES_REFRESH = _refresh_policy(os.getenv("ES_REFRESH"))

# cache
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", 2))

# sync
REINDEX_BATCH_SIZE = int(os.getenv("REINDEX_BATCH_SIZE", 500))
REINDEX_INTERVAL_HOURS = int(os.getenv("REINDEX_INTERVAL_HOURS", 0))

# pagination
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# HTTP server
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", 8000))
