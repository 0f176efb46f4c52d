from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any

import httpx

from biomarket.services.concurrency import settle_all
from biomarket.services.geo_service import AdministrativeUnit
from biomarket.services.normalize import to_int
from biomarket.services.reference_data import ReferenceDataset

logger = logging.getLogger(__name__)

SOURCE_LIVE = "georisques_api"
SOURCE_OFFLINE = "donnees_reference"

RISK_CATEGORIES: dict[str, str] = {
    "pollution": "/ssp/instructions",
    "flood": "/gaspar/azi",
    "disaster_history": "/gaspar/catnat",
}


@dataclass(frozen=True)
class RiskRecord:
    category: str
    total: int = 0
    items: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    label: str | None = None
    summary: dict[str, int] | None = None
    source: str = SOURCE_LIVE
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["items"] = list(self.items)
        return out


def extract_items(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        rows = next(
            (payload[k] for k in ("data", "results", "items") if isinstance(payload.get(k), list)),
            [],
        )
    else:
        rows = []
    return [r for r in rows if isinstance(r, dict)]


def live_total(payload: Any, items: list[dict[str, Any]]) -> int:
    if isinstance(payload, dict):
        for key in ("total", "results"):
            n = payload.get(key)
            if isinstance(n, int) and not isinstance(n, bool) and n >= 0:
                return n
    return len(items)


def describe_error(error: BaseException | None) -> str:
    if error is None:
        return "erreur inconnue"
    if isinstance(error, httpx.HTTPStatusError):
        return f"{error.response.status_code} {error.response.reason_phrase or 'reponse'}"
    return str(error) or error.__class__.__name__


def _non_negative(v: Any) -> int:
    n = to_int(v)
    return n if n is not None and n > 0 else 0


class RiskService:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        reference: ReferenceDataset,
        timeout: float = 15.0,
    ):
        self._http = http
        self.base_url = base_url.rstrip("/")
        self.reference = reference
        self.timeout = timeout

    async def fetch_category(self, category: str, code_commune: str) -> RiskRecord:
        resp = await self._http.get(
            f"{self.base_url}{RISK_CATEGORIES[category]}",
            params={"code_insee": code_commune},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
        items = extract_items(payload)
        return RiskRecord(
            category=category,
            total=live_total(payload, items),
            items=tuple(items),
            source=SOURCE_LIVE,
        )

    async def collect(self, unit: AdministrativeUnit) -> dict[str, RiskRecord]:
        settled = await settle_all(
            {category: self.fetch_category(category, unit.code) for category in RISK_CATEGORIES}
        )
        records: dict[str, RiskRecord] = {}
        for category, outcome in settled.items():
            if outcome.ok:
                records[category] = outcome.value
                continue
            reason = describe_error(outcome.error)
            logger.warning("GeoRisques (%s) failed for %s: %s", category, unit.code, reason)
            records[category] = RiskRecord(category=category, error=reason)
        return self.apply_offline_fallback(records, unit.department_code)

    def apply_offline_fallback(
        self, records: dict[str, RiskRecord], department_code: str | None
    ) -> dict[str, RiskRecord]:
        """Overlay department-level reference values on categories whose live total is zero."""
        out = {c: records.get(c) or RiskRecord(category=c) for c in RISK_CATEGORIES}
        fallback = self.reference.risk_fallback(department_code)
        if fallback is None:
            return out

        if out["pollution"].total == 0 and fallback["pollution_label"]:
            out["pollution"] = replace(
                out["pollution"],
                total=_non_negative(fallback["pollution_total"]),
                items=(),
                label=fallback["pollution_label"],
                source=SOURCE_OFFLINE,
            )
        if out["flood"].total == 0 and fallback["flood_label"]:
            out["flood"] = replace(
                out["flood"],
                total=_non_negative(fallback["flood_total"]),
                items=(),
                label=fallback["flood_label"],
                source=SOURCE_OFFLINE,
            )
        if out["disaster_history"].total == 0 and fallback["has_catnat"]:
            catnat = {k: _non_negative(v) for k, v in fallback["catnat"].items()}
            out["disaster_history"] = replace(
                out["disaster_history"],
                total=sum(catnat.values()),
                items=(),
                label=", ".join(f"{k}: {v}" for k, v in catnat.items()),
                summary=catnat,
                source=SOURCE_OFFLINE,
            )
        return out
