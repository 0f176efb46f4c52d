from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx

from biomarket.config import Settings
from biomarket.services.artifact_store import ArtifactStore
from biomarket.services.context_service import ContextAssembler
from biomarket.services.errors import MissingFieldError
from biomarket.services.facts import build_facts
from biomarket.services.geo_service import GeoService
from biomarket.services.macro_service import MacroService
from biomarket.services.ollama_client import OllamaClient
from biomarket.services.operator_directory import OperatorDirectory
from biomarket.services.reference_data import ReferenceDataset
from biomarket.services.risk_service import RiskService
from biomarket.services.statistics_service import StatisticsService
from biomarket.services.synthesis_service import SynthesisService

logger = logging.getLogger(__name__)

REPORT_VERSION = "1.0"
DEFAULT_OBJECTIVE = "Analyse générale"


class AnalysisService:
    def __init__(self, assembler: ContextAssembler, synthesis: SynthesisService, artifacts: ArtifactStore):
        self.assembler = assembler
        self.synthesis = synthesis
        self.artifacts = artifacts

    async def analyze(
        self,
        segment: str,
        place: str,
        objective: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        segment = (segment or "").strip()
        place = (place or "").strip()
        if not segment:
            raise MissingFieldError("segment")
        if not place:
            raise MissingFieldError("region")
        objective = (objective or "").strip() or DEFAULT_OBJECTIVE
        request_id = uuid.uuid4().hex

        self.artifacts.schedule(
            "request",
            request_id,
            {"segment": segment, "place": place, "objective": objective, "model": model},
        )
        logger.info("Analysis %s: segment=%s place=%s", request_id, segment, place)

        context = await self.assembler.collect(place, segment)
        facts = build_facts(context, context.operators)
        report = await self.synthesis.synthesize(
            facts, segment=segment, place=context.unit.name, objective=objective, model=model
        )

        report_meta = report.get("metadata") or {}
        result = {
            "report": report,
            "context": context.as_dict(),
            "metadata": {
                "request_id": request_id,
                "segment": segment,
                "place": place,
                "objective": objective,
                "generated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "model": report_meta.get("model"),
                "source": report_meta.get("source"),
                "version": REPORT_VERSION,
            },
        }
        self.artifacts.schedule("response", request_id, result)
        return result

    async def health(self) -> dict[str, Any]:
        settings = self.synthesis.settings
        out: dict[str, Any] = {
            "model": settings.ollama_chat_model,
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        }
        try:
            models = await self.synthesis.client.list_models()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Ollama health check failed: %s", e)
            return {
                **out,
                "status": "warning",
                "ollama": "disconnected",
                "message": "Ollama non disponible, utilisation du mode fallback",
            }
        return {**out, "status": "ok", "ollama": "connected", "available_models": models}


def build_analysis_service(settings: Settings, http: httpx.AsyncClient) -> AnalysisService:
    reference = ReferenceDataset.from_file(settings.reference_data_path)
    directory = OperatorDirectory.from_file(settings.operators_data_path)
    assembler = ContextAssembler(
        geo=GeoService(http, settings.geo_api_url, timeout=settings.http_timeout),
        risks=RiskService(http, settings.georisques_api_url, reference, timeout=settings.http_timeout),
        statistics=StatisticsService(settings.stats_db_path),
        macro=MacroService(
            http, settings.world_bank_api_url, country=settings.world_bank_country, timeout=settings.http_timeout
        ),
        directory=directory,
    )
    synthesis = SynthesisService(OllamaClient(settings.ollama_base_url, http), settings)
    return AnalysisService(assembler, synthesis, ArtifactStore(settings.artifacts_dir))
