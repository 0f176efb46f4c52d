from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from biomarket.config import settings
from biomarket.logging_utils import setup_logging
from biomarket.routers.api import router as api_router
from biomarket.services.analysis_service import build_analysis_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    async with httpx.AsyncClient(
        timeout=settings.http_timeout,
        headers={"User-Agent": settings.http_user_agent},
    ) as http:
        app.state.analysis = build_analysis_service(settings, http)
        yield
        await app.state.analysis.artifacts.drain()


app = FastAPI(title="BioMarket Insights", lifespan=lifespan)
app.include_router(api_router)
