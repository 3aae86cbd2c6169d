import copy
import fnmatch
import os
import re
from types import SimpleNamespace

os.environ.setdefault("POSTGRES_URL", "sqlite://")

import pytest
import redis
from elasticsearch import BadRequestError, ConnectionError as ESConnectionError, NotFoundError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vehiclesearch.cache import CacheLayer
from vehiclesearch.db import Base
from vehiclesearch.index import IndexManager
from vehiclesearch.models import Category, Listing, ListingImage, ListingSpecification, Seller
from vehiclesearch.services import ListingReadService, SearchService, SyncService


def api_error(cls, status, error_type, reason="error"):
    return cls(reason, SimpleNamespace(status=status), {"error": {"type": error_type, "reason": reason}})


# -- in-memory Elasticsearch ---------------------------------------------------

_SUBFIELDS = (".keyword", ".autocomplete")


def _field(doc, path):
    for suffix in _SUBFIELDS:
        if path.endswith(suffix):
            path = path[: -len(suffix)]
    return doc.get(path)


def _tokens(value):
    if value is None:
        return []
    return re.findall(r"[a-z0-9]+", str(value).lower())


def _split_boost(field):
    name, _, boost = field.partition("^")
    return name, float(boost) if boost else 1.0


class FakeIndices:
    def __init__(self, es):
        self.es = es

    def exists(self, index):
        self.es._check()
        return index in self.es.data

    def exists_alias(self, name):
        self.es._check()
        return name in self.es.aliases

    def get_alias(self, name):
        self.es._check()
        if name not in self.es.aliases:
            raise api_error(NotFoundError, 404, "aliases_not_found_exception")
        return {index: {"aliases": {name: {}}} for index in self.es.aliases[name]}

    def create(self, index, settings=None, mappings=None):
        self.es._check()
        if index in self.es.data:
            raise api_error(BadRequestError, 400, "resource_already_exists_exception")
        self.es.data[index] = {}
        self.es.created.append({"index": index, "settings": settings, "mappings": mappings})

    def put_alias(self, index, name):
        self.es._check()
        self.es.aliases[name] = {index}

    def update_aliases(self, actions):
        self.es._check()
        for action in actions:
            if "remove" in action:
                self.es.aliases.get(action["remove"]["alias"], set()).discard(action["remove"]["index"])
            if "add" in action:
                self.es.aliases.setdefault(action["add"]["alias"], set()).add(action["add"]["index"])

    def refresh(self, index):
        self.es._check()

    def delete(self, index):
        self.es._check()
        if index not in self.es.data:
            raise api_error(NotFoundError, 404, "index_not_found_exception")
        del self.es.data[index]
        for targets in self.es.aliases.values():
            targets.discard(index)


class FakeElasticsearch:
    """Just enough of the client API and query DSL for the queries we build."""

    def __init__(self):
        self.data = {}
        self.aliases = {}
        self.created = []
        self.searches = []
        self.reject_ids = set()
        self.down = False
        self.indices = FakeIndices(self)

    def _check(self):
        if self.down:
            raise ESConnectionError("Connection refused")

    def _concrete(self, index):
        if index in self.aliases:
            targets = sorted(self.aliases[index])
            if targets:
                return targets
        if index in self.data:
            return [index]
        raise api_error(NotFoundError, 404, "index_not_found_exception")

    def _docs(self, index, doc_id):
        docs = self.data[self._concrete(index)[0]]
        if doc_id not in docs:
            raise api_error(NotFoundError, 404, "document_missing_exception")
        return docs

    def index(self, index, id, document, refresh=None, require_alias=False):
        self._check()
        if require_alias and not self.aliases.get(index):
            raise api_error(NotFoundError, 404, "index_not_found_exception",
                            "no such index [%s] and [require_alias] request flag is [true]" % index)
        self.data[self._concrete(index)[0]][id] = copy.deepcopy(document)
        return {"_id": id, "result": "created"}

    def update(self, index, id, doc, refresh=None):
        self._check()
        self._docs(index, id)[id].update(copy.deepcopy(doc))
        return {"_id": id, "result": "updated"}

    def delete(self, index, id, refresh=None):
        self._check()
        del self._docs(index, id)[id]
        return {"_id": id, "result": "deleted"}

    def get(self, index, id):
        self._check()
        return {"_id": id, "_source": copy.deepcopy(self._docs(index, id)[id])}

    def bulk(self, operations, refresh=None, require_alias=False):
        self._check()
        items = []
        for action, doc in zip(operations[::2], operations[1::2]):
            meta = action["index"]
            if require_alias and not self.aliases.get(meta["_index"]):
                items.append({"index": {"_id": meta["_id"], "status": 404, "error": {
                    "type": "index_not_found_exception", "reason": "no such index [%s]" % meta["_index"]}}})
                continue
            if meta["_id"] in self.reject_ids:
                items.append({"index": {"_id": meta["_id"], "status": 400, "error": {
                    "type": "document_parsing_exception", "reason": "failed to parse field [price]"}}})
                continue
            self.data[self._concrete(meta["_index"])[0]][meta["_id"]] = copy.deepcopy(doc)
            items.append({"index": {"_id": meta["_id"], "status": 201, "result": "created"}})
        return {"errors": any("error" in i["index"] for i in items), "items": items}

    # -- search --------------------------------------------------------------

    def _score(self, clause, doc):
        """Return a score (>0 matches) or None when the clause does not match."""
        kind, body = next(iter(clause.items()))
        if kind == "match_all":
            return 1.0
        if kind == "term":
            field, value = next(iter(body.items()))
            if isinstance(value, dict):
                value = value["value"]
            return 1.0 if _field(doc, field) == value else None
        if kind == "range":
            field, bounds = next(iter(body.items()))
            value = _field(doc, field)
            if value is None:
                return None
            checks = {"gte": value >= bounds.get("gte", value), "lte": value <= bounds.get("lte", value)}
            if "gt" in bounds:
                checks["gt"] = value > bounds["gt"]
            if "lt" in bounds:
                checks["lt"] = value < bounds["lt"]
            return 1.0 if all(checks.values()) else None
        if kind == "multi_match":
            terms = set(_tokens(body["query"]))
            score = 0.0
            for field in body["fields"]:
                name, boost = _split_boost(field)
                if terms & set(_tokens(_field(doc, name))):
                    score += boost
            return score or None
        if kind == "match":
            field, spec = next(iter(body.items()))
            prefixes = _tokens(spec["query"])
            words = _tokens(_field(doc, field))
            if prefixes and all(any(w.startswith(p) for w in words) for p in prefixes):
                return float(spec.get("boost", 1.0))
            return None
        if kind == "bool":
            return self._bool(body, doc)
        raise NotImplementedError(kind)

    def _bool(self, body, doc):
        score = 0.0
        for clause in body.get("must", []):
            s = self._score(clause, doc)
            if s is None:
                return None
            score += s
        for clause in body.get("filter", []):
            if self._score(clause, doc) is None:
                return None
        should = body.get("should", [])
        if should:
            matched = [s for s in (self._score(c, doc) for c in should) if s is not None]
            if len(matched) < body.get("minimum_should_match", 0):
                return None
            score += sum(matched)
        return score or 1.0

    def _aggregate(self, aggs, docs):
        out = {}
        for name, agg in (aggs or {}).items():
            if "terms" in agg:
                counts = {}
                for doc in docs:
                    value = _field(doc, agg["terms"]["field"])
                    if value is not None:
                        counts[value] = counts.get(value, 0) + 1
                ordered = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
                out[name] = {"buckets": [{"key": k, "doc_count": c}
                                         for k, c in ordered[: agg["terms"].get("size", 10)]]}
            elif "range" in agg:
                buckets = []
                for r in agg["range"]["ranges"]:
                    count = 0
                    for doc in docs:
                        value = _field(doc, agg["range"]["field"])
                        if value is None:
                            continue
                        if "from" in r and value < r["from"]:
                            continue
                        if "to" in r and value >= r["to"]:
                            continue
                        count += 1
                    buckets.append({"key": r["key"], "doc_count": count})
                out[name] = {"buckets": buckets}
        return out

    def search(self, index, query=None, sort=None, from_=0, size=10, aggs=None,
               track_total_hits=None, track_scores=None):
        self._check()
        self.searches.append({"query": query, "sort": sort, "from": from_, "size": size, "aggs": aggs})
        docs = []
        for name in self._concrete(index):
            docs.extend(self.data[name].values())

        matched = []
        for doc in docs:
            score = self._score(query, doc) if query else 1.0
            if score is not None:
                matched.append((score, doc))

        for clause in reversed(sort or []):
            field, spec = next(iter(clause.items()))
            order = spec["order"] if isinstance(spec, dict) else spec
            reverse = order == "desc"
            if field == "_score":
                matched.sort(key=lambda sd: sd[0], reverse=reverse)
            else:
                present = [sd for sd in matched if sd[1].get(field) is not None]
                missing = [sd for sd in matched if sd[1].get(field) is None]
                present.sort(key=lambda sd: sd[1].get(field), reverse=reverse)
                matched = present + missing

        with_scores = track_scores or any("_score" in c for c in (sort or []))
        page = matched[from_: from_ + size]
        return {
            "hits": {
                "total": {"value": len(matched), "relation": "eq"},
                "hits": [{"_id": d["id"], "_score": s if with_scores else None, "_source": copy.deepcopy(d)}
                         for s, d in page],
            },
            "aggregations": self._aggregate(aggs, [d for _, d in matched]),
        }


# -- in-memory Redis -----------------------------------------------------------

class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.down = False

    def _check(self):
        if self.down:
            raise redis.ConnectionError("Connection refused")

    def get(self, key):
        self._check()
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value.encode("utf-8") if isinstance(value, str) else value
        self.ttls[key] = ex

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    def scan_iter(self, match="*", count=None):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    def expire_all(self):
        self.store.clear()
        self.ttls.clear()


# -- fixtures --------------------------------------------------------------------

@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def es():
    return FakeElasticsearch()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def index_manager(es):
    manager = IndexManager(es, alias="listings", index_name="listings_v1", refresh=False,
                           write_retries=1, retry_delay=0)
    manager.ensure_index()
    return manager


@pytest.fixture
def cache(redis_client):
    return CacheLayer(redis_client)


@pytest.fixture
def search_service(index_manager, cache):
    return SearchService(index_manager, cache)


@pytest.fixture
def sync_service(session_factory, index_manager, cache):
    return SyncService(session_factory, index_manager, cache, batch_size=2)


@pytest.fixture
def read_service(session_factory, cache):
    return ListingReadService(session_factory, cache)


@pytest.fixture
def make_listing(db):
    """Insert a listing (plus category/seller on first use) and return it."""
    state = {}

    def _make(**overrides):
        if "category" not in state:
            state["category"] = Category(name="Trucks", slug="trucks")
            state["seller"] = Seller(name="Jan Jansen", company_name="Nordic Trucks AB", country="SE")
            db.add_all([state["category"], state["seller"]])
            db.flush()
        fields = dict(
            title="Volvo FH 500 Tractor Unit",
            description="Well maintained tractor unit with retarder",
            brand="Volvo",
            model="FH 500",
            year=2020,
            mileage=420000,
            fuel_type="Diesel",
            transmission="Automatic",
            emission_class="Euro 6",
            price=45000,
            currency="EUR",
            condition="USED",
            status="ACTIVE",
            city="Gothenburg",
            country="Sweden",
            category=state["category"],
            seller=state["seller"],
        )
        images = overrides.pop("images", None)
        specs = overrides.pop("specifications", None)
        fields.update(overrides)
        listing = Listing(**fields)
        if images is not None:
            listing.images = images
        if specs is not None:
            listing.specifications = specs
        db.add(listing)
        db.commit()
        return listing

    return _make


@pytest.fixture
def image():
    def _image(url, position, thumbnail_url=None):
        return ListingImage(url=url, position=position, thumbnail_url=thumbnail_url)
    return _image


@pytest.fixture
def spec():
    def _spec(key, value):
        return ListingSpecification(key=key, value=value)
    return _spec
