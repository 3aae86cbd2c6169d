# vehiclesearch/documents.py
"""Mapping from a record-store listing to its flat search document.

`to_document` is pure: the listing must arrive with its category, seller,
images and specifications already loaded (see `crud.get_listing_with_relations`).
"""
from datetime import date, datetime
from typing import Any, Dict, Optional

from .errors import DocumentTransformError
from .models import ELIGIBLE_STATUS


def is_eligible(listing) -> bool:
    """Only published listings may have a document in the index."""
    return listing is not None and getattr(listing, "status", None) == ELIGIBLE_STATUS


def _number(value) -> Optional[float]:
    # Numeric columns come back as Decimal
    return None if value is None else float(value)


def _integer(value) -> Optional[int]:
    return None if value is None else int(value)


def _timestamp(value) -> Optional[str]:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _location(listing) -> Optional[Dict[str, float]]:
    lat = getattr(listing, "latitude", None)
    lon = getattr(listing, "longitude", None)
    if lat is None or lon is None:
        return None
    return {"lat": float(lat), "lon": float(lon)}


def _thumbnail(listing) -> Optional[str]:
    images = getattr(listing, "images", None) or []
    if not images:
        return None
    first = images[0]
    return getattr(first, "thumbnail_url", None) or getattr(first, "url", None)


def to_document(listing) -> Dict[str, Any]:
    listing_id = getattr(listing, "id", None)
    title = getattr(listing, "title", None)
    if not listing_id or not title:
        raise DocumentTransformError(
            "listing is missing identity fields (id=%r, title=%r)" % (listing_id, title)
        )

    category = getattr(listing, "category", None)
    seller = getattr(listing, "seller", None)
    specs = getattr(listing, "specifications", None) or []

    return {
        "id": str(listing_id),
        "title": title,
        "description": getattr(listing, "description", None),
        "slug": getattr(listing, "slug", None),
        "price": _number(getattr(listing, "price", None)),
        "currency": getattr(listing, "currency", None),
        "condition": getattr(listing, "condition", None),
        "status": getattr(listing, "status", None),
        "is_featured": bool(getattr(listing, "is_featured", False)),
        "views": _integer(getattr(listing, "views", None)) or 0,
        "brand": getattr(listing, "brand", None),
        "model": getattr(listing, "model", None),
        "year": _integer(getattr(listing, "year", None)),
        "mileage": _integer(getattr(listing, "mileage", None)),
        "fuel_type": getattr(listing, "fuel_type", None),
        "transmission": getattr(listing, "transmission", None),
        "power": getattr(listing, "power", None),
        "emission_class": getattr(listing, "emission_class", None),
        "axles": _integer(getattr(listing, "axles", None)),
        "weight": _number(getattr(listing, "weight", None)),
        "color": getattr(listing, "color", None),
        "vin": getattr(listing, "vin", None),
        "city": getattr(listing, "city", None),
        "country": getattr(listing, "country", None),
        "location": _location(listing),
        "category_id": getattr(listing, "category_id", None),
        "category_name": getattr(category, "name", None),
        "category_slug": getattr(category, "slug", None),
        "seller_id": getattr(listing, "seller_id", None),
        "seller_name": getattr(seller, "name", None),
        "company_name": getattr(seller, "company_name", None),
        "thumbnail_url": _thumbnail(listing),
        "specifications": [{"key": s.key, "value": s.value} for s in specs],
        "created_at": _timestamp(getattr(listing, "created_at", None)),
        "updated_at": _timestamp(getattr(listing, "updated_at", None)),
    }
