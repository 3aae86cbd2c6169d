# vehiclesearch/services.py
"""Search, read-through and index synchronization services.

`SearchService` fronts the index with the cache, `ListingReadService` does the
same for record-store reads, and `SyncService` keeps the index consistent with
the record store after every listing write and on full reindex.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config, crud
from .cache import (
    AGGREGATIONS_PREFIX, CATEGORIES_KEY, SEARCH_PREFIX, TTL, CacheLayer, cache_key, listing_key, seller_key,
)
from .documents import is_eligible, to_document
from .errors import DocumentTransformError, SearchError
from .index import IndexManager
from .query import (
    build_facets_body, build_search_body, build_suggest_body, normalize_facets,
    normalize_search_response, normalize_suggestions,
)
from .schemas import (
    BatchFailure, CategoryOut, ChangeKind, Facets, ItemError, ListingOut, PartialFields, ReindexSummary,
    SearchParams, SearchResponse, SellerOut, Suggestions, SyncResult, SyncState,
)
from .utils import logger

SessionFactory = Callable[[], Session]

PARTIAL_UPDATE_FIELDS = frozenset(PartialFields.model_fields)

MAX_CONSECUTIVE_FETCH_FAILURES = 3
MIN_SUGGEST_PREFIX = 2
MAX_SUGGESTIONS = 20

_CategoryList = TypeAdapter(List[CategoryOut])


def _load_cached(model, raw: Optional[bytes], key: str):
    if raw is None:
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Discarding unreadable cache entry %s: %s", key, e)
        return None


class SearchService:
    def __init__(self, index_manager: IndexManager, cache: CacheLayer):
        self.index = index_manager
        self.cache = cache

    def search(self, params: SearchParams) -> SearchResponse:
        key = cache_key(SEARCH_PREFIX, params.model_dump(mode="json"))
        cached = _load_cached(SearchResponse, self.cache.get(key), key)
        if cached is not None:
            return cached

        raw = self.index.search(build_search_body(params))
        result = normalize_search_response(raw, params)
        self.cache.set(key, result.model_dump_json(), TTL["search"])
        return result

    def suggest(self, prefix: str, limit: int = 8) -> Suggestions:
        # not cached: prefixes are too varied for a TTL to pay off
        prefix = (prefix or "").strip()
        if len(prefix) < MIN_SUGGEST_PREFIX:
            return Suggestions()
        limit = max(1, min(limit, MAX_SUGGESTIONS))
        raw = self.index.search(build_suggest_body(prefix, limit))
        return normalize_suggestions(raw)

    def facets(self, category_slug: Optional[str] = None) -> Facets:
        key = cache_key(AGGREGATIONS_PREFIX, {"category_slug": category_slug})
        cached = _load_cached(Facets, self.cache.get(key), key)
        if cached is not None:
            return cached

        raw = self.index.search(build_facets_body(category_slug))
        result = normalize_facets(raw.get("aggregations"))
        self.cache.set(key, result.model_dump_json(), TTL["aggregations"])
        return result


class ListingReadService:
    """Cached record-store reads behind the listing, seller and category pages."""

    def __init__(self, session_factory: SessionFactory, cache: CacheLayer):
        self.session_factory = session_factory
        self.cache = cache

    def get_listing(self, listing_id: str) -> Optional[ListingOut]:
        key = listing_key(listing_id)
        cached = _load_cached(ListingOut, self.cache.get(key), key)
        if cached is not None:
            return cached
        with self.session_factory() as db:
            listing = crud.get_listing_with_relations(db, listing_id)
            if not is_eligible(listing):
                return None
            out = ListingOut.model_validate(listing)
        self.cache.set(key, out.model_dump_json(), TTL["listing_detail"])
        return out

    def get_seller(self, seller_id: str) -> Optional[SellerOut]:
        key = seller_key(seller_id)
        cached = _load_cached(SellerOut, self.cache.get(key), key)
        if cached is not None:
            return cached
        with self.session_factory() as db:
            profile = crud.get_seller_profile(db, seller_id)
        if profile is None:
            return None
        out = SellerOut(**profile)
        self.cache.set(key, out.model_dump_json(), TTL["seller_profile"])
        return out

    def get_categories(self) -> List[CategoryOut]:
        raw = self.cache.get(CATEGORIES_KEY)
        if raw is not None:
            try:
                return _CategoryList.validate_json(raw)
            except ValidationError as e:
                logger.warning("Discarding unreadable cache entry %s: %s", CATEGORIES_KEY, e)
        with self.session_factory() as db:
            categories = [CategoryOut(**c) for c in crud.get_category_list(db)]
        self.cache.set(CATEGORIES_KEY, _CategoryList.dump_json(categories), TTL["categories"])
        return categories


class SyncService:
    def __init__(
        self,
        session_factory: SessionFactory,
        index_manager: IndexManager,
        cache: CacheLayer,
        batch_size: int = config.REINDEX_BATCH_SIZE,
    ):
        self.session_factory = session_factory
        self.index = index_manager
        self.cache = cache
        self.batch_size = batch_size

    @staticmethod
    def _advance(result: SyncResult, state: SyncState) -> None:
        logger.debug("listing %s: %s -> %s", result.listing_id, result.state.value, state.value)
        result.state = state

    def _invalidate(self, listing_id: str, category_id: Optional[str], seller_id: Optional[str]) -> None:
        self.cache.invalidate_for_listing(listing_id, category_id)
        # listing counts on the category list and seller profile
        self.cache.invalidate_category_list()
        if seller_id:
            self.cache.invalidate_seller(seller_id)

    def on_listing_written(self, listing_id: str, change, category_id: Optional[str] = None,
                           seller_id: Optional[str] = None) -> SyncResult:
        """Bring the index and cache in line with the current row for `listing_id`.

        Creates and updates always rebuild the full document from the record
        store, so replays and out-of-order deliveries converge. A row that is
        missing or no longer eligible is removed from the index instead.
        `category_id` and `seller_id` are only needed for deletes, where the
        row is gone.
        """
        change = ChangeKind(change)
        result = SyncResult(listing_id=listing_id, change=change)
        try:
            if change is ChangeKind.deleted:
                self.index.remove(listing_id)
                result.action = "removed"
            else:
                with self.session_factory() as db:
                    listing = crud.get_listing_with_relations(db, listing_id)
                    if listing is not None:
                        category_id = listing.category_id
                        seller_id = listing.seller_id
                    if is_eligible(listing):
                        doc = to_document(listing)
                    else:
                        doc = None
                if doc is None:
                    logger.info("Listing %s is not eligible for search, removing from index", listing_id)
                    self.index.remove(listing_id)
                    result.action = "removed"
                else:
                    self._advance(result, SyncState.transformed)
                    self.index.upsert(doc)
                    result.action = "indexed"
            self._advance(result, SyncState.indexed)
            self._invalidate(listing_id, category_id, seller_id)
            self._advance(result, SyncState.cache_invalidated)
        except (SearchError, SQLAlchemyError, DocumentTransformError) as e:
            logger.error("Sync of listing %s (%s) failed in state %s: %s",
                         listing_id, change.value, result.state.value, e)
            result.state = SyncState.failed
            result.error = str(e)
            raise
        return result

    def on_listing_fields_changed(self, listing_id: str, fields: Dict[str, Any],
                                  category_id: Optional[str] = None) -> bool:
        """Patch relation-independent fields in place; anything else needs a full rebuild."""
        unknown = set(fields) - PARTIAL_UPDATE_FIELDS
        if unknown:
            raise ValueError(
                "fields %s need a full rebuild, send an 'updated' event instead" % sorted(unknown)
            )
        try:
            patch = PartialFields.model_validate(fields).model_dump(exclude_unset=True)
        except ValidationError as e:
            raise ValueError("invalid field values: %s" % e) from e
        updated = self.index.partial_update(listing_id, patch)
        self.cache.invalidate_for_listing(listing_id, category_id)
        return updated

    def _transform_batch(self, listings) -> Tuple[List[Dict[str, Any]], List[ItemError]]:
        docs, errors = [], []
        for listing in listings:
            try:
                docs.append(to_document(listing))
            except DocumentTransformError as e:
                errors.append(ItemError(id=getattr(listing, "id", None), reason=str(e)))
        return docs, errors

    def reindex_all(self, rebuild: bool = False,
                    cancel_event: Optional[threading.Event] = None) -> ReindexSummary:
        """Page through every eligible listing and bulk index it.

        With `rebuild` the documents go into a new concrete index and the
        alias is swapped once the scan completes; a cancelled, aborted or
        failed rebuild drops the new index and leaves the live one untouched.
        Without it, documents are upserted in place and pages already
        indexed stay indexed on cancel.
        """
        summary = ReindexSummary(started_at=datetime.now(timezone.utc))
        self.index.ensure_index()
        target = self.index.create_build_index() if rebuild else None
        summary.index = target or self.index.live_index()
        logger.info("Starting full re-index into %s", summary.index)

        try:
            self._scan(summary, target, cancel_event)
            if target:
                if summary.cancelled or summary.aborted:
                    self.index.discard_build_index(target)
                    summary.index = self.index.live_index()
                else:
                    self.index.swap_alias(target)
        except Exception:
            if target and self.index.building_index() == target:
                self._drop_build_index(target)
            raise
        self.cache.invalidate_search_results()

        summary.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Full re-index complete: %d processed, %d indexed, %d batch failures, %d item errors",
            summary.total_processed, summary.indexed, len(summary.batch_failures), len(summary.item_errors),
        )
        return summary

    def _drop_build_index(self, target: str) -> None:
        logger.error("Re-index into %s failed, discarding it", target)
        try:
            self.index.discard_build_index(target)
        except SearchError as e:
            # the write pointer is already cleared; only the index itself is left behind
            logger.warning("Could not delete unfinished index %s: %s", target, e)

    def _scan(self, summary: ReindexSummary, target: Optional[str],
              cancel_event: Optional[threading.Event]) -> None:
        offset = 0
        fetch_failures = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.warning("Re-index cancelled at offset %d", offset)
                return

            try:
                with self.session_factory() as db:
                    listings = crud.list_eligible_listings(db, offset, self.batch_size)
                    docs, transform_errors = self._transform_batch(listings)
            except SQLAlchemyError as e:
                fetch_failures += 1
                summary.batch_failures.append(BatchFailure(offset=offset, error=str(e)))
                logger.warning("Re-index page at offset %d could not be read: %s", offset, e)
                if fetch_failures >= MAX_CONSECUTIVE_FETCH_FAILURES:
                    summary.aborted = True
                    logger.error("Re-index aborted after %d consecutive read failures", fetch_failures)
                    return
                offset += self.batch_size
                continue
            fetch_failures = 0

            if not listings:
                return

            summary.item_errors.extend(transform_errors)
            try:
                indexed, errors = self.index.bulk_upsert(docs, index=target)
            except SearchError as e:
                summary.batch_failures.append(BatchFailure(offset=offset, error=str(e)))
                logger.warning("Re-index batch at offset %d failed: %s", offset, e)
            else:
                summary.indexed += indexed
                summary.item_errors.extend(
                    ItemError(id=err.id, status=err.status, reason=err.reason) for err in errors
                )
            summary.total_processed += len(listings)
            offset += self.batch_size
            logger.info("Re-indexed %d listings...", summary.total_processed)
