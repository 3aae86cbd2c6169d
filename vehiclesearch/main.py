import uvicorn
from fastapi import FastAPI
from . import config
from .api.routes import router as api_router
from .dependencies import get_index_manager, get_reindex_job
from .errors import SearchError
from .scheduler import scheduler, start_scheduler
from .utils import logger

# create FastAPI instance
app = FastAPI(title="vehicle-search")
app.include_router(api_router)


@app.on_event("startup")
def on_startup_bootstrap_index():
    # keep serving if the engine is down; searches answer 503 until it returns
    try:
        get_index_manager().ensure_index()
    except SearchError as e:
        logger.error("Could not bootstrap search index: %s", e)
    start_scheduler(get_reindex_job(), config.REINDEX_INTERVAL_HOURS)


@app.on_event("shutdown")
def on_shutdown_stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)


def run():
    uvicorn.run("vehiclesearch.main:app", host=config.API_HOST, port=config.API_PORT)


if __name__ == "__main__":
    run()
