from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from biomarket.services.errors import GeoLookupError
from biomarket.services.normalize import normalize_text, to_int

logger = logging.getLogger(__name__)

GEO_FIELDS = "nom,code,population,codeDepartement,codeRegion,region"


@dataclass(frozen=True)
class AdministrativeUnit:
    name: str
    code: str
    population: int | None
    department_code: str | None
    region_code: str | None
    region_name: str | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _population(commune: dict[str, Any]) -> int:
    return to_int(commune.get("population")) or 0


def select_best_commune(name: str, communes: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Exact accent/case-insensitive name, else containment by population, else largest population."""
    candidates = [c for c in communes if isinstance(c, dict)]
    if not candidates:
        return None
    target = normalize_text(name)
    if not target:
        return candidates[0]

    for commune in candidates:
        if normalize_text(commune.get("nom")) == target:
            return commune

    partials = [c for c in candidates if target in normalize_text(c.get("nom"))]
    if partials:
        return max(partials, key=_population)
    return max(candidates, key=_population)


def _region_name(commune: dict[str, Any]) -> str | None:
    region = commune.get("region")
    if isinstance(region, dict):
        return str(region.get("nom") or "").strip() or None
    if isinstance(region, str):
        return region.strip() or None
    return None


class GeoService:
    def __init__(self, http: httpx.AsyncClient, base_url: str, timeout: float = 15.0):
        self._http = http
        self.base_url = base_url
        self.timeout = timeout

    async def fetch_communes(self, name: str) -> list[dict[str, Any]]:
        resp = await self._http.get(
            self.base_url,
            params={"nom": name, "fields": GEO_FIELDS},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
        return payload if isinstance(payload, list) else []

    async def resolve(self, name: str) -> AdministrativeUnit:
        try:
            communes = await self.fetch_communes(name)
        except (httpx.HTTPError, ValueError) as e:
            raise GeoLookupError(f"Echec de l'appel a l'API Geo pour '{name}': {e}") from e

        commune = select_best_commune(name, communes)
        if commune is None or not commune.get("code"):
            raise GeoLookupError(f"Aucune commune trouvee pour '{name}'")

        unit = AdministrativeUnit(
            name=str(commune.get("nom") or name).strip(),
            code=str(commune["code"]),
            population=to_int(commune.get("population")),
            department_code=str(commune.get("codeDepartement") or "") or None,
            region_code=str(commune.get("codeRegion") or "") or None,
            region_name=_region_name(commune),
        )
        logger.debug("Resolved '%s' to %s (%s)", name, unit.name, unit.code)
        return unit
