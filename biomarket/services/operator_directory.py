from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Sequence

from biomarket.services.normalize import (
    as_list,
    collapse_key,
    normalize_text,
    split_labels,
    to_float,
)

logger = logging.getLogger(__name__)

UNKNOWN = "Non renseigne"
DIRECT_COMPETITOR_LIMIT = 25


@dataclass(frozen=True)
class OperatorRecord:
    id: str
    name: str
    activity: str
    category: str
    city: str
    latitude: float | None = None
    longitude: float | None = None
    labels: tuple[str, ...] = field(default_factory=tuple)
    activities: tuple[str, ...] = field(default_factory=tuple)
    categories: tuple[str, ...] = field(default_factory=tuple)
    segments: tuple[str, ...] = field(default_factory=tuple)
    site: str | None = None
    contact: str | None = None
    address: str | None = None
    postal_code: str | None = None
    district: str | None = None
    updated_at: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for key in ("labels", "activities", "categories", "segments"):
            out[key] = list(out[key])
        return out

    def haystack(self) -> str:
        parts = [self.activity, self.category, self.name, self.city, *self.activities, *self.categories, *self.segments]
        return normalize_text(" ".join(p for p in parts if p))


def _text(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def operator_from_local_entry(entry: dict[str, Any], city: str = "") -> OperatorRecord:
    """Map one entry of the local operator dataset (French keys) to an OperatorRecord."""
    segments = split_labels(entry.get("segments"))
    activities = split_labels(entry.get("activites")) or segments or split_labels(entry.get("activite"))
    categories = split_labels(entry.get("categories")) or split_labels(entry.get("categorie"))
    name = _text(entry.get("nom")) or "Operateur local"
    return OperatorRecord(
        id=_text(entry.get("id")) or name,
        name=name,
        activity=_text(entry.get("activite")) or (activities[0] if activities else UNKNOWN),
        category=_text(entry.get("categorie")) or (categories[0] if categories else UNKNOWN),
        city=_text(entry.get("ville")) or city,
        latitude=to_float(entry.get("lat")),
        longitude=to_float(entry.get("lon", entry.get("lng"))),
        labels=tuple(split_labels(entry.get("labels"))),
        activities=tuple(activities),
        categories=tuple(categories),
        segments=tuple(segments or activities),
        site=_text(entry.get("site")),
        contact=_text(entry.get("contact")),
        address=_text(entry.get("adresse")),
        postal_code=_text(entry.get("code_postal")),
        district=_text(entry.get("quartier")),
        updated_at=_text(entry.get("date_mise_a_jour")),
    )


def operator_from_agencebio(item: dict[str, Any]) -> OperatorRecord:
    """Map one Agence Bio open-data operator item to an OperatorRecord."""
    addresses = [a for a in as_list(item.get("adressesOperateurs")) if isinstance(a, dict)]
    address = addresses[0] if addresses else {}
    activities = split_labels(item.get("activites"))
    categories = split_labels(item.get("categories"))
    productions = split_labels(item.get("productions"))
    labels: list[str] = []
    for cert in as_list(item.get("certificats")):
        if isinstance(cert, dict):
            org = _text(cert.get("organisme"))
            state = _text(cert.get("etatCertification"))
            if org and (state is None or state.upper() in {"ENGAGEE", "ENGAGÉE", "CERTIFIE", "CERTIFIÉ"}):
                labels.append(org)
    sites = [s.get("url") for s in as_list(item.get("siteWebs")) if isinstance(s, dict) and s.get("url")]
    street = " ".join(p for p in (_text(address.get("lieu")), _text(address.get("codePostal"))) if p)
    name = _text(item.get("denominationcourante")) or _text(item.get("raisonSociale")) or "Inconnu"
    return OperatorRecord(
        id=_text(item.get("numeroBio")) or _text(item.get("siret")) or _text(item.get("id")) or name,
        name=name,
        activity=activities[0] if activities else (categories[0] if categories else UNKNOWN),
        category=categories[0] if categories else (activities[0] if activities else UNKNOWN),
        city=_text(address.get("ville")) or "",
        latitude=to_float(address.get("lat")),
        longitude=to_float(address.get("long")),
        labels=tuple(dict.fromkeys(labels)),
        activities=tuple(activities),
        categories=tuple(categories),
        segments=tuple(productions or activities),
        site=_text(sites[0]) if sites else None,
        contact=_text(item.get("telephone")) or _text(item.get("email")),
        address=street or None,
        postal_code=_text(address.get("codePostal")),
        updated_at=_text(item.get("dateMaj")),
    )


class OperatorDirectory:
    """Known operators indexed by normalized city name. Immutable once built."""

    def __init__(self, by_city: dict[str, Sequence[OperatorRecord]] | None = None):
        index: dict[str, list[OperatorRecord]] = {}
        for city, operators in (by_city or {}).items():
            records = list(operators)
            for key in {normalize_text(city), collapse_key(city)}:
                if key:
                    index.setdefault(key, []).extend(records)
        self._index = MappingProxyType({k: tuple(v) for k, v in index.items()})

    @classmethod
    def from_payload(cls, payload: Any) -> "OperatorDirectory":
        by_city: dict[str, list[OperatorRecord]] = {}
        if not isinstance(payload, dict):
            return cls()
        for city, entries in payload.items():
            rows: list[OperatorRecord] = []
            for entry in as_list(entries):
                if not isinstance(entry, dict):
                    logger.warning("Skipping malformed operator entry for '%s'", city)
                    continue
                rows.append(operator_from_local_entry(entry, city=str(city)))
            if rows:
                by_city.setdefault(str(city), []).extend(rows)
        return cls(by_city)

    @classmethod
    def from_file(cls, path: str | Path) -> "OperatorDirectory":
        p = Path(path)
        if not p.exists():
            logger.warning("Operator dataset not found at %s, directory is empty", p)
            return cls()
        try:
            payload = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load operator dataset %s: %s", p, e)
            return cls()
        directory = cls.from_payload(payload)
        logger.info("Operator directory loaded: %d city keys", len(directory))
        return directory

    def __len__(self) -> int:
        return len(self._index)

    def find_by_city(self, city: str) -> list[OperatorRecord]:
        key = normalize_text(city)
        if not key:
            return []
        found = self._index.get(key) or self._index.get(collapse_key(city))
        return list(found or ())


def filter_by_segment(operators: list[OperatorRecord], segment: str) -> list[OperatorRecord]:
    """Operators whose activity/category/segments contain the segment.

    An empty match returns the unfiltered list, so a non-empty input never
    yields an empty result.
    """
    needle = normalize_text(segment)
    if not needle or not operators:
        return list(operators)
    filtered = [
        op
        for op in operators
        if any(needle in normalize_text(v) for v in (op.activity, op.category, *op.activities, *op.categories, *op.segments))
    ]
    return filtered if filtered else list(operators)


def matches_segment(operator: OperatorRecord, segment: str) -> bool:
    needle = normalize_text(segment)
    if not needle:
        return True
    haystack = operator.haystack()
    tokens = [t for t in re.split(r"\s+", needle) if len(t) >= 4]
    if not tokens:
        return needle in haystack
    return any(t in haystack for t in tokens)


def _breakdown(values: Iterable[str]) -> dict[str, int]:
    counts = Counter(v or UNKNOWN for v in values)
    return dict(sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])))


def build_competition_summary(operators: list[OperatorRecord], segment: str) -> dict[str, Any]:
    direct = [op for op in operators if matches_segment(op, segment)]
    return {
        "total_operators": len(operators),
        "direct_competitors": len(direct),
        "direct_competitor_list": [op.as_dict() for op in direct[:DIRECT_COMPETITOR_LIMIT]],
        "activity_breakdown": _breakdown(op.activity for op in operators),
        "category_breakdown": _breakdown(op.category for op in operators),
    }
