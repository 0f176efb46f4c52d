from __future__ import annotations

import math
import re
import unicodedata
from typing import Any, Iterable

_YEAR_RE = re.compile(r"\d{4}")


def normalize_text(value: Any) -> str:
    """Accent-stripped, lowercased, trimmed form used for every lookup key."""
    x = unicodedata.normalize("NFD", str(value or ""))
    x = "".join(ch for ch in x if not unicodedata.combining(ch))
    return x.lower().strip()


def collapse_key(value: Any) -> str:
    return re.sub(r"[\s\-]+", "", normalize_text(value))


def to_float(v: Any) -> float | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        f = float(v)
    elif isinstance(v, str):
        s = v.strip().replace(",", ".").replace(" ", "")
        if not s:
            return None
        try:
            f = float(s)
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def to_int(v: Any) -> int | None:
    f = to_float(v)
    return int(f) if f is not None else None


def normalize_year(value: Any) -> int | None:
    """First 4-digit group of any stored year representation ("2021", "2021-2022", 2021.0)."""
    if value is None or isinstance(value, bool):
        return None
    m = _YEAR_RE.search(str(value))
    if m:
        return int(m.group(0))
    f = to_float(value)
    if f is not None and f >= 1900:
        return int(round(f))
    return None


def average(values: Iterable[float]) -> float:
    vals = list(values)
    if not vals:
        return 0.0
    return sum(vals) / len(vals)


def as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def split_labels(value: Any) -> list[str]:
    """Flatten a string/list field into trimmed labels ("AB; Demeter" -> ["AB", "Demeter"])."""
    out: list[str] = []
    for item in as_list(value):
        if isinstance(item, dict):
            item = item.get("nom") or item.get("libelle") or item.get("label") or ""
        for part in re.split(r"[;,]", str(item or "")):
            part = part.strip()
            if part and part not in out:
                out.append(part)
    return out
