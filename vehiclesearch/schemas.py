# vehiclesearch/schemas.py
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class SortOption(str, Enum):
    relevance = "relevance"
    newest = "newest"
    oldest = "oldest"
    price_asc = "price_asc"
    price_desc = "price_desc"
    year_asc = "year_asc"
    year_desc = "year_desc"


class ChangeKind(str, Enum):
    created = "created"
    updated = "updated"
    deleted = "deleted"


class SyncState(str, Enum):
    pending = "PENDING"
    transformed = "TRANSFORMED"
    indexed = "INDEXED"
    cache_invalidated = "CACHE_INVALIDATED"
    failed = "FAILED"


class SearchParams(BaseModel):
    """Structured search request. Every field is optional."""
    q: Optional[str] = None
    category_id: Optional[str] = None
    category_slug: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    condition: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    emission_class: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    sort_by: SortOption = SortOption.newest
    page: int = Field(1, ge=1)
    limit: int = Field(DEFAULT_PAGE_SIZE, ge=1)

    @field_validator(
        "q", "category_id", "category_slug", "brand", "model", "condition",
        "country", "city", "fuel_type", "transmission", "emission_class",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("limit")
    @classmethod
    def cap_limit(cls, v):
        return min(v, MAX_PAGE_SIZE)


class FacetBucket(BaseModel):
    value: str
    label: str
    count: int


class Facets(BaseModel):
    categories: List[FacetBucket] = []
    brands: List[FacetBucket] = []
    countries: List[FacetBucket] = []
    conditions: List[FacetBucket] = []
    fuel_types: List[FacetBucket] = []
    transmissions: List[FacetBucket] = []
    emission_classes: List[FacetBucket] = []
    price_ranges: List[FacetBucket] = []
    year_ranges: List[FacetBucket] = []


class SearchResponse(BaseModel):
    listings: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
    total_pages: int
    facets: Facets


class SuggestionItem(BaseModel):
    text: str
    count: int


class Suggestions(BaseModel):
    titles: List[SuggestionItem] = []
    brands: List[SuggestionItem] = []
    models: List[SuggestionItem] = []
    categories: List[SuggestionItem] = []


class SyncEvent(BaseModel):
    change: ChangeKind
    # last-known relations, needed for deletes since the row is already gone
    category_id: Optional[str] = None
    seller_id: Optional[str] = None


class SyncResult(BaseModel):
    listing_id: str
    change: ChangeKind
    state: SyncState = SyncState.pending
    action: Optional[str] = None
    error: Optional[str] = None


class BatchFailure(BaseModel):
    offset: int
    error: str


class ItemError(BaseModel):
    id: Optional[str]
    status: Optional[int] = None
    reason: str


class ReindexSummary(BaseModel):
    total_processed: int = 0
    indexed: int = 0
    batch_failures: List[BatchFailure] = []
    item_errors: List[ItemError] = []
    cancelled: bool = False
    aborted: bool = False
    index: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ImageOut(BaseModel):
    url: str
    thumbnail_url: Optional[str]
    position: Optional[int]
    class Config:
        from_attributes = True


class SpecificationOut(BaseModel):
    key: str
    value: Optional[str]
    class Config:
        from_attributes = True


class ListingOut(BaseModel):
    id: str
    title: str
    slug: Optional[str]
    description: Optional[str]
    brand: Optional[str]
    model: Optional[str]
    year: Optional[int]
    mileage: Optional[int]
    fuel_type: Optional[str]
    transmission: Optional[str]
    power: Optional[str]
    emission_class: Optional[str]
    axles: Optional[int]
    weight: Optional[float]
    color: Optional[str]
    vin: Optional[str]
    price: Optional[float]
    currency: Optional[str]
    condition: Optional[str]
    status: str
    is_featured: Optional[bool]
    views: Optional[int]
    city: Optional[str]
    country: Optional[str]
    category_id: Optional[str]
    seller_id: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    images: List[ImageOut] = []
    specifications: List[SpecificationOut] = []
    class Config:
        from_attributes = True


class CategoryOut(BaseModel):
    id: str
    name: str
    slug: str
    listing_count: int


class SellerOut(BaseModel):
    id: str
    name: str
    company_name: Optional[str]
    city: Optional[str]
    country: Optional[str]
    active_listings: int


class PartialFields(BaseModel):
    """Fields that never depend on relations, so they can be patched without a rebuild.

    Strict: a string "false" is not a boolean and "17" is not a view count.
    """
    views: int = 0
    price: Optional[float] = None
    currency: Optional[str] = None
    is_featured: bool = False
    mileage: Optional[int] = None

    class Config:
        strict = True
        extra = "forbid"


class PartialUpdateEvent(BaseModel):
    fields: Dict[str, Any]
    category_id: Optional[str] = None


class ReindexStatus(BaseModel):
    running: bool
    last_summary: Optional[ReindexSummary] = None
    last_error: Optional[str] = None
