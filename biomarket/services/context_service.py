from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from biomarket.services.concurrency import settle_all
from biomarket.services.errors import MissingFieldError
from biomarket.services.geo_service import AdministrativeUnit, GeoService
from biomarket.services.macro_service import MacroService
from biomarket.services.operator_directory import (
    OperatorDirectory,
    OperatorRecord,
    build_competition_summary,
    filter_by_segment,
)
from biomarket.services.risk_service import RISK_CATEGORIES, RiskRecord, RiskService
from biomarket.services.statistics_service import StatisticsService, empty_statistics

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Context:
    meta: dict[str, Any]
    unit: AdministrativeUnit
    competition: dict[str, Any]
    risks: dict[str, RiskRecord]
    regional_production: list[dict[str, Any]] = field(default_factory=list)
    national_production: list[dict[str, Any]] = field(default_factory=list)
    sales_trend: dict[str, Any] = field(default_factory=dict)
    trade_trend: dict[str, Any] = field(default_factory=dict)
    macro: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    operators: tuple[OperatorRecord, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict[str, Any]:
        return {
            "meta": dict(self.meta),
            "geo": self.unit.as_dict(),
            "competition": self.competition,
            "risks": {
                "code_commune": self.unit.code,
                **{k: r.as_dict() for k, r in self.risks.items()},
            },
            "regional_production": self.regional_production,
            "national_production": self.national_production,
            "sales_trend": self.sales_trend,
            "trade_trend": self.trade_trend,
            "macro": self.macro,
            "operators": [op.as_dict() for op in self.operators],
        }


class ContextAssembler:
    def __init__(
        self,
        geo: GeoService,
        risks: RiskService,
        statistics: StatisticsService,
        macro: MacroService,
        directory: OperatorDirectory,
    ):
        self.geo = geo
        self.risks = risks
        self.statistics = statistics
        self.macro = macro
        self.directory = directory

    async def lookup_operators(self, unit: AdministrativeUnit, place: str, segment: str) -> list[OperatorRecord]:
        operators = self.directory.find_by_city(unit.name) or self.directory.find_by_city(place)
        return filter_by_segment(operators, segment)

    async def collect(self, place: str, segment: str) -> Context:
        place = (place or "").strip()
        segment = (segment or "").strip()
        if not place:
            raise MissingFieldError("region")

        # Hard dependency: every other source is keyed on the resolved unit.
        unit = await self.geo.resolve(place)

        settled = await settle_all(
            {
                "risks": self.risks.collect(unit),
                "statistics": self.statistics.collect(unit.region_name),
                "macro": self.macro.collect(),
                "operators": self.lookup_operators(unit, place, segment),
            }
        )
        for key, outcome in settled.items():
            if not outcome.ok:
                logger.warning("Context source '%s' failed for %s: %s", key, unit.code, outcome.error)

        risks = settled["risks"].value_or(None) or {c: RiskRecord(category=c) for c in RISK_CATEGORIES}
        stats = settled["statistics"].value_or(None) or empty_statistics()
        operators: list[OperatorRecord] = settled["operators"].value_or([])

        return Context(
            meta={
                "place": place,
                "segment": segment,
                "generated_at": _now_iso(),
            },
            unit=unit,
            competition=build_competition_summary(operators, segment),
            risks=risks,
            regional_production=stats["regional_production"],
            national_production=stats["national_production"],
            sales_trend=stats["sales_trend"],
            trade_trend=stats["trade_trend"],
            macro=settled["macro"].value_or({}),
            operators=tuple(operators),
        )
