# vehiclesearch/crud.py
"""Read-only queries against the listing record store.

Everything the search core needs from the database goes through here: the
single listing fetch used by real-time sync, the paged scan used by bulk
reindex, and the small lookups behind the cached seller/category endpoints.
"""
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload
from typing import List, Optional
from .models import Listing, Category, Seller, ELIGIBLE_STATUS

def _with_relations(q):
    return q.options(
        selectinload(Listing.category),
        selectinload(Listing.seller),
        selectinload(Listing.images),
        selectinload(Listing.specifications),
    )

def get_listing_with_relations(db: Session, listing_id: str) -> Optional[Listing]:
    # refresh rows already in the session so relations come back in mapped order
    q = _with_relations(db.query(Listing)).populate_existing()
    return q.filter(Listing.id == listing_id).first()

def list_eligible_listings(db: Session, offset: int = 0, limit: int = 500) -> List[Listing]:
    # ordered by primary key so consecutive pages never overlap
    q = _with_relations(db.query(Listing))
    q = q.filter(Listing.status == ELIGIBLE_STATUS).order_by(Listing.id)
    return q.offset(offset).limit(limit).all()

def get_category_list(db: Session):
    counts = (
        db.query(Listing.category_id, func.count(Listing.id))
        .filter(Listing.status == ELIGIBLE_STATUS)
        .group_by(Listing.category_id)
        .all()
    )
    by_category = dict(counts)
    categories = db.query(Category).order_by(Category.position, Category.name).all()
    return [
        {"id": c.id, "name": c.name, "slug": c.slug, "listing_count": by_category.get(c.id, 0)}
        for c in categories
    ]

def get_seller_profile(db: Session, seller_id: str):
    seller = db.query(Seller).filter(Seller.id == seller_id).first()
    if not seller:
        return None
    active = (
        db.query(func.count(Listing.id))
        .filter(Listing.seller_id == seller_id, Listing.status == ELIGIBLE_STATUS)
        .scalar()
    )
    return {
        "id": seller.id,
        "name": seller.name,
        "company_name": seller.company_name,
        "city": seller.city,
        "country": seller.country,
        "active_listings": active or 0,
    }
