# vehiclesearch/mappings.py
"""Index settings and field mappings for the listing search document."""
from typing import Any, Dict

from . import config

LISTING_SYNONYMS = [
    "truck,lorry",
    "trailer,semi-trailer",
    "excavator,digger",
    "forklift,fork lift,lift truck",
    "van,lcv",
]

AUTOCOMPLETE_MIN_GRAM = 2
AUTOCOMPLETE_MAX_GRAM = 15


def index_settings(shards: int = config.ES_SHARDS, replicas: int = config.ES_REPLICAS) -> Dict[str, Any]:
    return {
        "number_of_shards": shards,
        "number_of_replicas": replicas,
        "analysis": {
            "analyzer": {
                "listing_analyzer": {
                    "type": "custom",
                    "tokenizer": "standard",
                    "filter": ["lowercase", "asciifolding", "listing_synonym"],
                },
                "autocomplete_analyzer": {
                    "type": "custom",
                    "tokenizer": "autocomplete_tokenizer",
                    "filter": ["lowercase", "asciifolding"],
                },
                "autocomplete_search_analyzer": {
                    "type": "custom",
                    "tokenizer": "standard",
                    "filter": ["lowercase", "asciifolding"],
                },
            },
            "tokenizer": {
                "autocomplete_tokenizer": {
                    "type": "edge_ngram",
                    "min_gram": AUTOCOMPLETE_MIN_GRAM,
                    "max_gram": AUTOCOMPLETE_MAX_GRAM,
                    "token_chars": ["letter", "digit"],
                },
            },
            "filter": {
                "listing_synonym": {
                    "type": "synonym",
                    "synonyms": LISTING_SYNONYMS,
                },
            },
        },
    }


_AUTOCOMPLETE = {
    "type": "text",
    "analyzer": "autocomplete_analyzer",
    "search_analyzer": "autocomplete_search_analyzer",
}
_KEYWORD = {"type": "keyword"}


def _text_with_keyword(analyzer: str = "listing_analyzer", autocomplete: bool = False) -> Dict[str, Any]:
    fields: Dict[str, Any] = {"keyword": _KEYWORD}
    if autocomplete:
        fields["autocomplete"] = _AUTOCOMPLETE
    return {"type": "text", "analyzer": analyzer, "fields": fields}


INDEX_MAPPINGS: Dict[str, Any] = {
    # unknown fields are stored but never mapped, keeping the mapping bounded
    "dynamic": False,
    "properties": {
        "id": _KEYWORD,
        "title": _text_with_keyword(autocomplete=True),
        "description": {"type": "text", "analyzer": "listing_analyzer"},
        "slug": _KEYWORD,
        "price": {"type": "float"},
        "currency": _KEYWORD,
        "condition": _KEYWORD,
        "status": _KEYWORD,
        "is_featured": {"type": "boolean"},
        "views": {"type": "integer"},

        # vehicle details
        "brand": _text_with_keyword(autocomplete=True),
        "model": _text_with_keyword(autocomplete=True),
        "year": {"type": "integer"},
        "mileage": {"type": "integer"},
        "fuel_type": _KEYWORD,
        "transmission": _KEYWORD,
        "power": _KEYWORD,
        "emission_class": _KEYWORD,
        "axles": {"type": "integer"},
        "weight": {"type": "float"},
        "color": _KEYWORD,
        "vin": _KEYWORD,

        # location
        "city": _text_with_keyword(analyzer="standard"),
        "country": _text_with_keyword(analyzer="standard"),
        "location": {"type": "geo_point"},

        # resolved relations
        "category_id": _KEYWORD,
        "category_name": _KEYWORD,
        "category_slug": _KEYWORD,
        "seller_id": _KEYWORD,
        "seller_name": _text_with_keyword(analyzer="standard"),
        "company_name": _text_with_keyword(analyzer="standard"),
        "thumbnail_url": {"type": "keyword", "index": False},

        "specifications": {
            "type": "nested",
            "properties": {
                "key": _KEYWORD,
                "value": _KEYWORD,
            },
        },

        "created_at": {"type": "date"},
        "updated_at": {"type": "date"},
    },
}
