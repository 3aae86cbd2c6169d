# vehiclesearch/errors.py
"""Error types shared by the index, query and sync layers."""
from dataclasses import dataclass
from typing import Optional


class SearchError(Exception):
    """Base class for failures talking to the search index."""


class SearchUnavailableError(SearchError):
    """The index is unreachable, timed out or not bootstrapped. Safe to retry."""


class InvalidSearchRequest(SearchError):
    """The engine rejected the request as malformed. Retrying will not help."""


class DocumentTransformError(ValueError):
    """A listing without its identity fields was handed to the transformer."""


@dataclass
class BulkItemError:
    id: Optional[str]
    status: Optional[int]
    reason: str
