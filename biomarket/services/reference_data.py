from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

logger = logging.getLogger(__name__)

# "69 - Rhône", "13-Bouches-du-Rhône", "2A Corse-du-Sud", "974 La Réunion"
_DEPT_KEY_RE = re.compile(r"^\s*(\d{1,3}|2[AB])(?=[\s\-–]|$)", re.IGNORECASE)


def normalize_department_code(code: Any) -> str:
    x = str(code or "").strip().upper()
    if x.isdigit() and len(x) < 2:
        x = x.zfill(2)
    return x


def department_code_of_key(key: str) -> str | None:
    m = _DEPT_KEY_RE.match(str(key or ""))
    return normalize_department_code(m.group(1)) if m else None


class ReferenceDataset:
    """Offline department-level figures, loaded once and read-only afterwards."""

    def __init__(self, departements: Mapping[str, dict[str, Any]] | None = None):
        index: dict[str, dict[str, Any]] = {}
        for key, value in (departements or {}).items():
            code = department_code_of_key(key)
            if code is None or not isinstance(value, dict):
                continue
            if code in index:
                logger.warning("Duplicate department code %s in reference data (key '%s')", code, key)
                continue
            index[code] = {"label": key, **value}
        self._by_code = MappingProxyType(index)

    @classmethod
    def from_file(cls, path: str | Path) -> "ReferenceDataset":
        p = Path(path)
        if not p.exists():
            logger.warning("Reference dataset not found at %s, offline risk fallback disabled", p)
            return cls()
        try:
            payload = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load reference dataset %s: %s", p, e)
            return cls()
        departements = payload.get("departements") if isinstance(payload, dict) else None
        return cls(departements if isinstance(departements, dict) else None)

    def __len__(self) -> int:
        return len(self._by_code)

    def department(self, code: Any) -> Mapping[str, Any] | None:
        """Exact match on the leading code token of each key, never a bare prefix match."""
        if not code:
            return None
        entry = self._by_code.get(normalize_department_code(code))
        return MappingProxyType(entry) if entry is not None else None

    def risk_fallback(self, code: Any) -> dict[str, Any] | None:
        data = self.department(code)
        if data is None:
            return None
        return {
            "pollution_label": data.get("risque_pollution_basol") or None,
            "pollution_total": data.get("nb_sites_basol"),
            "flood_label": data.get("risque_inondation_azi") or None,
            "flood_total": data.get("nb_zones_azi"),
            "catnat": {
                "secheresse": data.get("hist_secheresse_catnat") or 0,
                "inondation": data.get("hist_inondation_catnat") or 0,
            },
            "has_catnat": "hist_secheresse_catnat" in data or "hist_inondation_catnat" in data,
        }
