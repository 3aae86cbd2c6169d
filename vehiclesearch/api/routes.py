from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
from .. import schemas
from ..config import DEFAULT_PAGE_SIZE
from ..dependencies import get_read_service, get_reindex_job, get_search_service, get_sync_service
from ..errors import InvalidSearchRequest, SearchUnavailableError
from ..scheduler import ReindexJob
from ..services import ListingReadService, SearchService, SyncService
from ..utils import logger

router = APIRouter()

def _search_failed(e: Exception) -> HTTPException:
    # an outage must never look like "no listings match"
    if isinstance(e, InvalidSearchRequest):
        return HTTPException(status_code=400, detail=str(e))
    logger.warning("Search unavailable: %s", e)
    return HTTPException(status_code=503, detail="Search temporarily unavailable")

@router.get("/health")
def health():
    return {"status": "ok"}

@router.get("/search", response_model=schemas.SearchResponse)
def search(
    q: str | None = Query(None),
    category_id: str | None = Query(None),
    category_slug: str | None = Query(None),
    brand: str | None = Query(None),
    model: str | None = Query(None),
    condition: str | None = Query(None),
    country: str | None = Query(None),
    city: str | None = Query(None),
    fuel_type: str | None = Query(None),
    transmission: str | None = Query(None),
    emission_class: str | None = Query(None),
    min_price: float | None = Query(None),
    max_price: float | None = Query(None),
    min_year: int | None = Query(None),
    max_year: int | None = Query(None),
    sort_by: schemas.SortOption = Query(schemas.SortOption.newest),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    svc: SearchService = Depends(get_search_service),
):
    params = schemas.SearchParams(
        q=q, category_id=category_id, category_slug=category_slug, brand=brand, model=model,
        condition=condition, country=country, city=city, fuel_type=fuel_type,
        transmission=transmission, emission_class=emission_class,
        min_price=min_price, max_price=max_price, min_year=min_year, max_year=max_year,
        sort_by=sort_by, page=page, limit=limit,
    )
    try:
        return svc.search(params)
    except (SearchUnavailableError, InvalidSearchRequest) as e:
        raise _search_failed(e)

@router.get("/search/suggestions", response_model=schemas.Suggestions)
def suggestions(
    q: str = Query(""),
    limit: int = Query(8, ge=1),
    svc: SearchService = Depends(get_search_service),
):
    try:
        return svc.suggest(q, limit)
    except (SearchUnavailableError, InvalidSearchRequest) as e:
        raise _search_failed(e)

@router.get("/search/aggregations", response_model=schemas.Facets)
def aggregations(
    category_slug: str | None = Query(None),
    svc: SearchService = Depends(get_search_service),
):
    try:
        return svc.facets(category_slug or None)
    except (SearchUnavailableError, InvalidSearchRequest) as e:
        raise _search_failed(e)

@router.get("/listings/{listing_id}", response_model=schemas.ListingOut)
def get_listing(listing_id: str, svc: ListingReadService = Depends(get_read_service)):
    obj = svc.get_listing(listing_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return obj

@router.get("/sellers/{seller_id}", response_model=schemas.SellerOut)
def get_seller(seller_id: str, svc: ListingReadService = Depends(get_read_service)):
    obj = svc.get_seller(seller_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Seller not found")
    return obj

@router.get("/categories", response_model=List[schemas.CategoryOut])
def categories(svc: ListingReadService = Depends(get_read_service)):
    return svc.get_categories()

@router.post("/sync/listings/{listing_id}", response_model=schemas.SyncResult)
def listing_written(listing_id: str, event: schemas.SyncEvent, svc: SyncService = Depends(get_sync_service)):
    try:
        return svc.on_listing_written(listing_id, event.change, category_id=event.category_id,
                                      seller_id=event.seller_id)
    except SearchUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

@router.patch("/sync/listings/{listing_id}/fields")
def listing_fields_changed(
    listing_id: str,
    event: schemas.PartialUpdateEvent,
    svc: SyncService = Depends(get_sync_service),
):
    try:
        updated = svc.on_listing_fields_changed(listing_id, event.fields, category_id=event.category_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SearchUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "updated" if updated else "skipped"}

@router.post("/admin/reindex", status_code=202)
def start_reindex(rebuild: bool = Query(False), job: ReindexJob = Depends(get_reindex_job)):
    if not job.start(rebuild=rebuild):
        raise HTTPException(status_code=409, detail="Re-index already running")
    return {"status": "started", "rebuild": rebuild}

@router.delete("/admin/reindex")
def cancel_reindex(job: ReindexJob = Depends(get_reindex_job)):
    if not job.cancel():
        raise HTTPException(status_code=409, detail="No re-index running")
    return {"status": "cancelling"}

@router.get("/admin/reindex", response_model=schemas.ReindexStatus)
def reindex_status(job: ReindexJob = Depends(get_reindex_job)):
    return schemas.ReindexStatus(running=job.running, last_summary=job.last_summary, last_error=job.last_error)
