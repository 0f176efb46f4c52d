from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from biomarket.schemas import AnalyzeRequest, AnalyzeResponse, HealthResponse
from biomarket.services.analysis_service import AnalysisService
from biomarket.services.errors import GeoLookupError, MissingFieldError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


def _service(request: Request) -> AnalysisService:
    return request.app.state.analysis


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    return HealthResponse(**await _service(request).health())


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(req: AnalyzeRequest, request: Request):
    try:
        result = await _service(request).analyze(
            segment=req.segment,
            place=req.region,
            objective=req.objective,
            model=req.model,
        )
    except MissingFieldError as e:
        logger.info("Rejected analysis request: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail()) from e
    except GeoLookupError as e:
        logger.info("Geo lookup failed for '%s': %s", req.region, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_detail()) from e
    return AnalyzeResponse(**result)
