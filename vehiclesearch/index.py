# vehiclesearch/index.py
"""Index lifecycle and document CRUD against Elasticsearch.

All reads and writes go through the alias (`ES_INDEX_ALIAS`). The concrete
index behind it is tracked by `IndexManager.live_index()`; it only changes
during a rebuild, when a fresh index is filled and the alias is swapped in
one `update_aliases` call.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from elasticsearch import (
    ApiError,
    ConnectionError as ESConnectionError,
    ConnectionTimeout,
    Elasticsearch,
    NotFoundError,
)

from . import config
from .errors import BulkItemError, InvalidSearchRequest, SearchError, SearchUnavailableError
from .mappings import INDEX_MAPPINGS, index_settings
from .utils import logger, retry

TRANSIENT_ERRORS = (ESConnectionError, ConnectionTimeout)


def create_es_client() -> Elasticsearch:
    return Elasticsearch(
        config.ELASTICSEARCH_URL,
        request_timeout=config.ES_REQUEST_TIMEOUT,
        max_retries=config.ES_MAX_RETRIES,
        retry_on_timeout=True,
    )


def _body(resp) -> Dict[str, Any]:
    return getattr(resp, "body", resp)


def _error_type(exc: ApiError) -> Optional[str]:
    body = getattr(exc, "body", None)
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("type")
    return None


def translate_error(exc: Exception, action: str) -> SearchError:
    """Map an engine/transport exception onto the retry vs. malformed split."""
    if isinstance(exc, TRANSIENT_ERRORS):
        return SearchUnavailableError("%s: search engine unreachable (%s)" % (action, exc))
    if isinstance(exc, ApiError):
        status = exc.meta.status
        # 404 here means the alias itself is missing, i.e. not bootstrapped
        if status == 404 or status == 429 or status >= 500:
            return SearchUnavailableError("%s: search engine returned %s" % (action, status))
        return InvalidSearchRequest("%s: request rejected (%s)" % (action, exc))
    return SearchError("%s failed: %s" % (action, exc))


class IndexManager:
    def __init__(
        self,
        client: Elasticsearch,
        alias: str = config.ES_INDEX_ALIAS,
        index_name: str = config.ES_INDEX_NAME,
        refresh=config.ES_REFRESH,
        write_retries: int = config.ES_WRITE_RETRIES,
        retry_delay: float = config.ES_RETRY_DELAY,
    ):
        self.client = client
        self.alias = alias
        self.index_name = index_name
        self.refresh = refresh
        self.write_retries = write_retries
        self.retry_delay = retry_delay
        self._lock = threading.Lock()
        self._live_index: Optional[str] = None
        self._build_index: Optional[str] = None

    # -- alias pointer -------------------------------------------------------

    def live_index(self) -> Optional[str]:
        with self._lock:
            return self._live_index

    def building_index(self) -> Optional[str]:
        with self._lock:
            return self._build_index

    def _write_targets(self) -> List[str]:
        with self._lock:
            build = self._build_index
        return [self.alias, build] if build else [self.alias]

    # -- lifecycle -----------------------------------------------------------

    def ensure_index(self) -> str:
        """Create the index and bind the alias if needed. Safe to call repeatedly."""
        try:
            if self.client.indices.exists_alias(name=self.alias):
                target = self._resolve_alias()
            else:
                if not self.client.indices.exists(index=self.index_name):
                    self._create(self.index_name)
                self.client.indices.put_alias(index=self.index_name, name=self.alias)
                logger.info("Alias %s bound to %s", self.alias, self.index_name)
                target = self.index_name
        except TRANSIENT_ERRORS + (ApiError,) as e:
            raise translate_error(e, "ensure_index") from e
        with self._lock:
            self._live_index = target
        return target

    def _ready(self) -> None:
        # the startup bootstrap fails while the engine is down; retry it on the next write
        if self.live_index() is None:
            self.ensure_index()

    def _resolve_alias(self) -> str:
        resp = _body(self.client.indices.get_alias(name=self.alias))
        names = sorted(resp.keys())
        if not names:
            raise SearchUnavailableError("alias %s is not bound to any index" % self.alias)
        if len(names) > 1:
            logger.warning("Alias %s points at %d indices: %s", self.alias, len(names), names)
        return names[0]

    def _create(self, name: str) -> None:
        try:
            self.client.indices.create(index=name, settings=index_settings(), mappings=INDEX_MAPPINGS)
        except ApiError as e:
            # another worker won the race
            if _error_type(e) == "resource_already_exists_exception":
                logger.info("Index %s already exists", name)
                return
            raise
        logger.info("Created index %s", name)

    def create_build_index(self) -> str:
        """Create a fresh concrete index that writes are mirrored into until swapped."""
        name = "%s_%s" % (self.alias, datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f"))
        try:
            self._create(name)
        except TRANSIENT_ERRORS + (ApiError,) as e:
            raise translate_error(e, "create_build_index") from e
        with self._lock:
            self._build_index = name
        return name

    def swap_alias(self, new_index: str) -> Optional[str]:
        """Atomically repoint the alias at `new_index` and drop the old index."""
        old_index = self.live_index()
        actions = []
        if old_index and old_index != new_index:
            actions.append({"remove": {"index": old_index, "alias": self.alias}})
        actions.append({"add": {"index": new_index, "alias": self.alias}})
        try:
            self.client.indices.refresh(index=new_index)
            self.client.indices.update_aliases(actions=actions)
        except TRANSIENT_ERRORS + (ApiError,) as e:
            raise translate_error(e, "swap_alias") from e
        with self._lock:
            self._live_index = new_index
            self._build_index = None
        logger.info("Alias %s swapped from %s to %s", self.alias, old_index, new_index)

        if old_index and old_index != new_index:
            try:
                self.client.indices.delete(index=old_index)
            except NotFoundError:
                pass
            except TRANSIENT_ERRORS + (ApiError,) as e:
                logger.warning("Could not delete retired index %s: %s", old_index, e)
        return old_index

    def discard_build_index(self, name: str) -> None:
        with self._lock:
            if self._build_index == name:
                self._build_index = None
        try:
            self.client.indices.delete(index=name)
        except NotFoundError:
            pass
        except TRANSIENT_ERRORS + (ApiError,) as e:
            raise translate_error(e, "discard_build_index") from e
        logger.info("Discarded unfinished index %s", name)

    # -- documents -----------------------------------------------------------

    def _call(self, action: str, fn, **kwargs):
        """Run an idempotent engine call with bounded retries on transport errors."""
        call = retry(TRANSIENT_ERRORS, tries=self.write_retries, delay=self.retry_delay)(fn)
        try:
            return call(**kwargs)
        except NotFoundError:
            raise
        except TRANSIENT_ERRORS + (ApiError,) as e:
            raise translate_error(e, action) from e

    def upsert(self, doc: Dict[str, Any]) -> None:
        """Create or fully replace the document at doc['id'].

        Writes through the alias set `require_alias`, so a missing alias is
        reported as unavailable instead of auto-creating an unmapped index
        under the alias name.
        """
        self._ready()
        for target in self._write_targets():
            try:
                self._call("upsert", self.client.index, index=target, id=doc["id"], document=doc,
                           refresh=self.refresh, require_alias=target == self.alias)
            except NotFoundError as e:
                raise translate_error(e, "upsert") from e

    def partial_update(self, doc_id: str, fields: Dict[str, Any]) -> bool:
        updated = False
        for target in self._write_targets():
            try:
                self._call("partial_update", self.client.update, index=target, id=doc_id,
                           doc=fields, refresh=self.refresh)
                updated = True
            except NotFoundError:
                logger.warning("Listing %s not found in %s, skipping update", doc_id, target)
        return updated

    def remove(self, doc_id: str) -> bool:
        removed = False
        for target in self._write_targets():
            try:
                self._call("remove", self.client.delete, index=target, id=doc_id, refresh=self.refresh)
                removed = True
            except NotFoundError:
                logger.warning("Listing %s not found in %s, skipping delete", doc_id, target)
        return removed

    def bulk_upsert(self, docs: List[Dict[str, Any]], index: Optional[str] = None) -> Tuple[int, List[BulkItemError]]:
        """Index a batch; returns (success_count, per-item errors) for the primary target."""
        errors: List[BulkItemError] = []
        valid = []
        for doc in docs:
            if not doc.get("id"):
                errors.append(BulkItemError(id=None, status=None, reason="document has no id"))
            else:
                valid.append(doc)
        if not valid:
            return 0, errors

        if index is None:
            self._ready()
        targets = [index] if index else self._write_targets()
        success = 0
        for i, target in enumerate(targets):
            operations: List[Dict[str, Any]] = []
            for doc in valid:
                operations.append({"index": {"_index": target, "_id": doc["id"]}})
                operations.append(doc)
            try:
                resp = _body(self._call("bulk_upsert", self.client.bulk, operations=operations,
                                        refresh=self.refresh, require_alias=target == self.alias))
            except NotFoundError as e:
                raise translate_error(e, "bulk_upsert") from e
            ok, failed = self._bulk_results(resp)
            if i == 0:
                success = ok
                errors.extend(failed)
            elif failed:
                logger.warning("Bulk mirror into %s had %d errors", target, len(failed))

        if errors:
            logger.error("Bulk indexing had %d errors", len(errors))
        else:
            logger.info("Bulk indexed %d listings", success)
        return success, errors

    @staticmethod
    def _bulk_results(resp: Dict[str, Any]) -> Tuple[int, List[BulkItemError]]:
        ok = 0
        failed = []
        for item in resp.get("items", []):
            result = item.get("index") or next(iter(item.values()), {})
            error = result.get("error")
            if error:
                reason = error.get("reason") if isinstance(error, dict) else str(error)
                failed.append(BulkItemError(id=result.get("_id"), status=result.get("status"),
                                            reason=reason or "unknown error"))
            else:
                ok += 1
        return ok, failed

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            resp = _body(self.client.get(index=self.alias, id=doc_id))
        except NotFoundError:
            return None
        except TRANSIENT_ERRORS + (ApiError,) as e:
            raise translate_error(e, "get") from e
        return resp.get("_source")

    def search(self, body: Dict[str, Any]) -> Dict[str, Any]:
        kwargs = dict(body)
        if "from" in kwargs:
            kwargs["from_"] = kwargs.pop("from")
        try:
            resp = self.client.search(index=self.alias, **kwargs)
        except TRANSIENT_ERRORS + (ApiError,) as e:
            raise translate_error(e, "search") from e
        return _body(resp)
