from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from vehiclesearch.dependencies import get_read_service, get_reindex_job, get_search_service, get_sync_service
from vehiclesearch.main import app
from vehiclesearch.schemas import ReindexSummary


@pytest.fixture
def job():
    job = MagicMock()
    job.running = False
    job.last_summary = None
    job.last_error = None
    return job


@pytest.fixture
def client(search_service, read_service, sync_service, job):
    app.dependency_overrides[get_search_service] = lambda: search_service
    app.dependency_overrides[get_read_service] = lambda: read_service
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    app.dependency_overrides[get_reindex_job] = lambda: job
    # not used as a context manager, so startup hooks (index bootstrap, scheduler) stay off
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_sync_then_search(client, make_listing):
    listing = make_listing()
    r = client.post("/sync/listings/%s" % listing.id, json={"change": "created"})
    assert r.status_code == 200
    assert r.json()["state"] == "CACHE_INVALIDATED"

    r = client.get("/search", params={"q": "volvo", "max_price": 50000})
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 1
    assert body["listings"][0]["id"] == listing.id
    assert body["facets"]["brands"] == [{"value": "Volvo", "label": "Volvo", "count": 1}]


def test_search_limit_is_capped(client):
    body = client.get("/search", params={"limit": 500}).json()
    assert body["limit"] == 100
    assert body["total"] == 0
    assert body["total_pages"] == 0


def test_search_rejects_unknown_sort(client):
    assert client.get("/search", params={"sort_by": "cheapest"}).status_code == 422


def test_search_beyond_result_window(client):
    r = client.get("/search", params={"page": 200, "limit": 100})
    assert r.status_code == 400


def test_search_outage_is_503(client, es):
    es.down = True
    r = client.get("/search", params={"q": "volvo"})
    assert r.status_code == 503
    assert r.json()["detail"] == "Search temporarily unavailable"
    assert client.get("/search/aggregations").status_code == 503


def test_suggestions_and_aggregations(client, make_listing):
    listing = make_listing()
    client.post("/sync/listings/%s" % listing.id, json={"change": "created"})

    suggestions = client.get("/search/suggestions", params={"q": "fh"}).json()
    assert suggestions["models"] == [{"text": "FH 500", "count": 1}]

    facets = client.get("/search/aggregations", params={"category_slug": "trucks"}).json()
    assert facets["categories"][0]["count"] == 1


def test_partial_update_endpoint(client, make_listing, es):
    listing = make_listing()
    client.post("/sync/listings/%s" % listing.id, json={"change": "created"})

    r = client.patch("/sync/listings/%s/fields" % listing.id, json={"fields": {"views": 41}})
    assert r.json() == {"status": "updated"}
    assert es.data["listings_v1"][listing.id]["views"] == 41

    r = client.patch("/sync/listings/%s/fields" % listing.id, json={"fields": {"title": "New"}})
    assert r.status_code == 400

    r = client.patch("/sync/listings/%s/fields" % listing.id, json={"fields": {"is_featured": "false"}})
    assert r.status_code == 400
    assert es.data["listings_v1"][listing.id]["is_featured"] is False

    r = client.patch("/sync/listings/unknown/fields", json={"fields": {"views": 1}})
    assert r.json() == {"status": "skipped"}


def test_sync_outage_is_503(client, make_listing, es):
    listing = make_listing()
    es.down = True
    r = client.post("/sync/listings/%s" % listing.id, json={"change": "updated"})
    assert r.status_code == 503


def test_listing_seller_and_categories(client, make_listing):
    listing = make_listing()
    r = client.get("/listings/%s" % listing.id)
    assert r.status_code == 200
    assert r.json()["brand"] == "Volvo"
    assert client.get("/listings/nope").status_code == 404

    seller = client.get("/sellers/%s" % listing.seller_id).json()
    assert seller["company_name"] == "Nordic Trucks AB"
    assert client.get("/sellers/nope").status_code == 404

    assert client.get("/categories").json()[0]["listing_count"] == 1


def test_draft_listing_detail_is_404(client, make_listing):
    listing = make_listing(status="DRAFT")
    assert client.get("/listings/%s" % listing.id).status_code == 404


def test_start_reindex(client, job):
    job.start.return_value = True
    r = client.post("/admin/reindex", params={"rebuild": "true"})
    assert r.status_code == 202
    assert r.json() == {"status": "started", "rebuild": True}
    job.start.assert_called_once_with(rebuild=True)


def test_start_reindex_while_running(client, job):
    job.start.return_value = False
    assert client.post("/admin/reindex").status_code == 409


def test_cancel_reindex(client, job):
    job.cancel.return_value = True
    assert client.delete("/admin/reindex").json() == {"status": "cancelling"}
    job.cancel.return_value = False
    assert client.delete("/admin/reindex").status_code == 409


def test_reindex_status(client, job):
    job.last_summary = ReindexSummary(total_processed=4, indexed=3, index="listings_v1")
    body = client.get("/admin/reindex").json()
    assert body["running"] is False
    assert body["last_summary"]["indexed"] == 3
    assert body["last_error"] is None


def test_run_serves_app(monkeypatch):
    from vehiclesearch import main

    serve = MagicMock()
    monkeypatch.setattr(main.uvicorn, "run", serve)
    main.run()
    serve.assert_called_once_with("vehiclesearch.main:app", host=main.config.API_HOST, port=main.config.API_PORT)
