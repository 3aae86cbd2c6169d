# vehiclesearch/utils.py
"""Shared utilities: the service logger and a retry decorator for idempotent calls."""
import os
import logging
import time
from functools import wraps
from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, level, logging.INFO))
    return logging.getLogger(name)


logger = get_logger("vehicle-search")


def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger):
    """Call the wrapped function up to `tries` times while it raises `exceptions`.

    The first retry waits `delay` seconds and each later one `backoff` times
    longer. Whatever the final attempt raises reaches the caller.
    """
    def deco_retry(fn):
        name = getattr(fn, "__name__", repr(fn))

        @wraps(fn)
        def fn_retry(*args, **kwargs):
            wait = delay
            for attempt in range(1, tries):
                try:
                    return fn(*args, **kwargs)
                except exceptions as e:
                    logger.warning("%s failed (attempt %d of %d): %s, retrying in %s sec",
                                   name, attempt, tries, e, wait)
                    if wait:
                        time.sleep(wait)
                    wait *= backoff
            return fn(*args, **kwargs)
        return fn_retry
    return deco_retry
