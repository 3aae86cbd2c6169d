# vehiclesearch/query.py
"""Translate search requests into Elasticsearch query DSL and normalize responses.

Everything here is pure: bodies go out through `IndexManager.search`, raw
responses come back in through the `normalize_*` helpers.
"""
import math
from typing import Any, Dict, List, Optional

from .errors import InvalidSearchRequest
from .models import ELIGIBLE_STATUS
from .schemas import (
    Facets, FacetBucket, SearchParams, SearchResponse, SortOption, SuggestionItem, Suggestions,
)

# engine default for index.max_result_window
MAX_RESULT_WINDOW = 10000

TEXT_FIELDS = [
    "title^3",
    "description",
    "brand^2",
    "model^2",
    "seller_name^0.5",
    "company_name^0.5",
]

# request field -> keyword field in the index
TERM_FILTERS = {
    "category_id": "category_id",
    "category_slug": "category_slug",
    "brand": "brand.keyword",
    "model": "model.keyword",
    "condition": "condition",
    "country": "country.keyword",
    "city": "city.keyword",
    "fuel_type": "fuel_type",
    "transmission": "transmission",
    "emission_class": "emission_class",
}

# facet name -> (keyword field, bucket count)
TERMS_FACETS = {
    "categories": ("category_name", 50),
    "brands": ("brand.keyword", 100),
    "countries": ("country.keyword", 50),
    "conditions": ("condition", 5),
    "fuel_types": ("fuel_type", 20),
    "transmissions": ("transmission", 10),
    "emission_classes": ("emission_class", 10),
}

PRICE_RANGES = [
    {"key": "Under €5,000", "to": 5000},
    {"key": "€5,000 - €15,000", "from": 5000, "to": 15000},
    {"key": "€15,000 - €30,000", "from": 15000, "to": 30000},
    {"key": "€30,000 - €50,000", "from": 30000, "to": 50000},
    {"key": "€50,000 - €100,000", "from": 50000, "to": 100000},
    {"key": "Over €100,000", "from": 100000},
]

YEAR_RANGES = [
    {"key": "2020+", "from": 2020},
    {"key": "2015-2019", "from": 2015, "to": 2020},
    {"key": "2010-2014", "from": 2010, "to": 2015},
    {"key": "Before 2010", "to": 2010},
]

SORT_FIELDS = {
    SortOption.newest: ("created_at", "desc"),
    SortOption.oldest: ("created_at", "asc"),
    SortOption.price_asc: ("price", "asc"),
    SortOption.price_desc: ("price", "desc"),
    SortOption.year_asc: ("year", "asc"),
    SortOption.year_desc: ("year", "desc"),
}

SUGGEST_BUCKET_SIZE = 5


def eligibility_filter() -> Dict[str, Any]:
    return {"term": {"status": ELIGIBLE_STATUS}}


def facet_aggregations() -> Dict[str, Any]:
    aggs: Dict[str, Any] = {
        name: {"terms": {"field": field, "size": size}}
        for name, (field, size) in TERMS_FACETS.items()
    }
    aggs["price_ranges"] = {"range": {"field": "price", "ranges": PRICE_RANGES}}
    aggs["year_ranges"] = {"range": {"field": "year", "ranges": YEAR_RANGES}}
    return aggs


def _range(field: str, low, high) -> Optional[Dict[str, Any]]:
    bounds = {}
    if low is not None:
        bounds["gte"] = low
    if high is not None:
        bounds["lte"] = high
    return {"range": {field: bounds}} if bounds else None


def build_filters(params: SearchParams) -> List[Dict[str, Any]]:
    """Exact-match and range constraints. Eligibility is always the first clause."""
    filters = [eligibility_filter()]
    for name, field in TERM_FILTERS.items():
        value = getattr(params, name)
        if value is not None:
            filters.append({"term": {field: value}})
    for clause in (
        _range("price", params.min_price, params.max_price),
        _range("year", params.min_year, params.max_year),
    ):
        if clause:
            filters.append(clause)
    return filters


def build_sort(sort_by: SortOption, has_text: bool) -> List[Dict[str, Any]]:
    sort: List[Dict[str, Any]] = [{"is_featured": {"order": "desc"}}]
    if sort_by is SortOption.relevance and has_text:
        sort.append({"_score": {"order": "desc"}})
    else:
        # relevance without a query has nothing to score, fall back to newest
        field, order = SORT_FIELDS.get(sort_by, SORT_FIELDS[SortOption.newest])
        sort.append({field: {"order": order, "missing": "_last"}})
    sort.append({"id": {"order": "asc"}})
    return sort


def build_search_body(params: SearchParams) -> Dict[str, Any]:
    offset = (params.page - 1) * params.limit
    if offset + params.limit > MAX_RESULT_WINDOW:
        raise InvalidSearchRequest(
            "page %d with limit %d is beyond the first %d results" % (params.page, params.limit, MAX_RESULT_WINDOW)
        )

    query: Dict[str, Any] = {"filter": build_filters(params)}
    if params.q:
        query["must"] = [{
            "multi_match": {
                "query": params.q,
                "fields": TEXT_FIELDS,
                "type": "best_fields",
                "fuzziness": "AUTO",
            }
        }]

    return {
        "query": {"bool": query},
        "sort": build_sort(params.sort_by, bool(params.q)),
        "from": offset,
        "size": params.limit,
        "track_total_hits": True,
        "track_scores": bool(params.q),
        "aggs": facet_aggregations(),
    }


def build_facets_body(category_slug: Optional[str] = None) -> Dict[str, Any]:
    filters = [eligibility_filter()]
    if category_slug:
        filters.append({"term": {"category_slug": category_slug}})
    return {
        "size": 0,
        "query": {"bool": {"filter": filters}},
        "track_total_hits": True,
        "aggs": facet_aggregations(),
    }


def build_suggest_body(prefix: str, limit: int) -> Dict[str, Any]:
    return {
        "size": 0,
        "query": {
            "bool": {
                "filter": [eligibility_filter()],
                "should": [
                    {"match": {"title.autocomplete": {"query": prefix, "boost": 3}}},
                    {"match": {"brand.autocomplete": {"query": prefix, "boost": 2}}},
                    {"match": {"model.autocomplete": {"query": prefix, "boost": 2}}},
                ],
                "minimum_should_match": 1,
            }
        },
        "aggs": {
            "titles": {"terms": {"field": "title.keyword", "size": limit}},
            "brands": {"terms": {"field": "brand.keyword", "size": SUGGEST_BUCKET_SIZE}},
            "models": {"terms": {"field": "model.keyword", "size": SUGGEST_BUCKET_SIZE}},
            "categories": {"terms": {"field": "category_name", "size": SUGGEST_BUCKET_SIZE}},
        },
    }


# -- response normalization ---------------------------------------------------

def _buckets(aggs: Optional[Dict[str, Any]], name: str) -> List[Dict[str, Any]]:
    agg = (aggs or {}).get(name) or {}
    buckets = agg.get("buckets") or []
    if isinstance(buckets, dict):
        # keyed aggregations
        buckets = [dict(b, key=k) for k, b in buckets.items()]
    return buckets


def normalize_facets(aggs: Optional[Dict[str, Any]]) -> Facets:
    """Every facet is present even if the field never existed in the index."""
    facets = {}
    for name in Facets.model_fields:
        facets[name] = [
            FacetBucket(value=str(b["key"]), label=str(b["key"]), count=b.get("doc_count", 0))
            for b in _buckets(aggs, name)
        ]
    return Facets(**facets)


def total_hits(raw: Dict[str, Any]) -> int:
    total = (raw.get("hits") or {}).get("total", 0)
    if isinstance(total, dict):
        return total.get("value", 0)
    return total or 0


def normalize_hits(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    documents = []
    for hit in (raw.get("hits") or {}).get("hits", []):
        doc = dict(hit.get("_source") or {})
        score = hit.get("_score")
        if score is not None:
            doc["score"] = score
        documents.append(doc)
    return documents


def normalize_search_response(raw: Dict[str, Any], params: SearchParams) -> SearchResponse:
    total = total_hits(raw)
    return SearchResponse(
        listings=normalize_hits(raw),
        total=total,
        page=params.page,
        limit=params.limit,
        total_pages=math.ceil(total / params.limit) if total else 0,
        facets=normalize_facets(raw.get("aggregations")),
    )


def normalize_suggestions(raw: Dict[str, Any]) -> Suggestions:
    aggs = raw.get("aggregations")
    return Suggestions(**{
        name: [SuggestionItem(text=str(b["key"]), count=b.get("doc_count", 0)) for b in _buckets(aggs, name)]
        for name in Suggestions.model_fields
    })
