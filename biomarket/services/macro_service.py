from __future__ import annotations

import logging
from typing import Any

import httpx

from biomarket.services.concurrency import settle_all
from biomarket.services.normalize import to_float, to_int

logger = logging.getLogger(__name__)

WORLD_BANK_INDICATORS: dict[str, str] = {
    "population": "SP.POP.TOTL",
    "gdp_growth": "NY.GDP.MKTP.KD.ZG",
    "agri_land_pct": "AG.LND.AGRI.ZS",
}
MAX_POINTS = 6


def parse_world_bank_series(payload: Any) -> list[dict[str, Any]]:
    # [page_meta, [{"date": "2023", "value": 68.1}, ...]], newest first
    if not isinstance(payload, list) or len(payload) < 2 or not isinstance(payload[1], list):
        return []
    points: list[dict[str, Any]] = []
    for entry in payload[1]:
        if not isinstance(entry, dict):
            continue
        year = to_int(entry.get("date"))
        value = to_float(entry.get("value"))
        if year is None or value is None:
            continue
        points.append({"year": year, "value": value})
        if len(points) >= MAX_POINTS:
            break
    return sorted(points, key=lambda p: p["year"])


class MacroService:
    def __init__(self, http: httpx.AsyncClient, base_url: str, country: str = "FRA", timeout: float = 15.0):
        self._http = http
        self.base_url = base_url.rstrip("/")
        self.country = country
        self.timeout = timeout

    async def fetch_series(self, indicator: str) -> list[dict[str, Any]]:
        resp = await self._http.get(
            f"{self.base_url}/country/{self.country}/indicator/{indicator}",
            params={"format": "json", "per_page": 8},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return parse_world_bank_series(resp.json())

    async def collect(self) -> dict[str, list[dict[str, Any]]]:
        settled = await settle_all(
            {key: self.fetch_series(code) for key, code in WORLD_BANK_INDICATORS.items()}
        )
        out: dict[str, list[dict[str, Any]]] = {}
        for key, outcome in settled.items():
            if not outcome.ok:
                logger.warning("World Bank indicator %s failed: %s", key, outcome.error)
            out[key] = outcome.value_or([])
        if not any(outcome.ok for outcome in settled.values()):
            logger.warning("World Bank indicators unavailable, macro context left empty")
            return {}
        return out
