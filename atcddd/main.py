import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from atcddd.api.routers.atc import router as atc_router
from atcddd.services.crawl.http import close_fetcher

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the shared fetcher's HTTP client on shutdown."""
    try:
        yield
    finally:
        close_fetcher()


app = FastAPI(title="WHO ATC/DDD Index", version="0.1", lifespan=lifespan)

app.include_router(atc_router)
