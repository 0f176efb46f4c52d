"""Bounded "facts" payload derived from a collected context.

Everything here is pure: no I/O, no clock, no hidden state. Malformed or
missing parts of the context are read as empty values.
"""
from __future__ import annotations

import re
from collections import Counter
from typing import Any, Iterable

from biomarket.services.normalize import to_float, to_int

TOP_ACTIVITIES = 8
TOP_OPERATORS = 12
TOP_EVENTS = 3
MAX_SERIES = 5
MAX_MACRO = 6
RISK_KEYS = ("pollution", "flood", "disaster_history")

_DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})")
_YMD_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")


def _dict(v: Any) -> dict[str, Any]:
    return v if isinstance(v, dict) else {}


def _list(v: Any) -> list[Any]:
    return list(v) if isinstance(v, (list, tuple)) else []


def _operator_dict(op: Any) -> dict[str, Any]:
    if hasattr(op, "as_dict"):
        return op.as_dict()
    return _dict(op)


def _date_key(value: Any) -> tuple[int, int, int]:
    s = str(value or "").strip()
    m = _DMY_RE.match(s)
    if m:
        return int(m.group(3)), int(m.group(2)), int(m.group(1))
    m = _YMD_RE.match(s)
    if m:
        return int(m.group(1)), int(m.group(2)), int(m.group(3))
    return (0, 0, 0)


def rank_counts(values: Iterable[Any], limit: int) -> list[dict[str, Any]]:
    counts = Counter(str(v).strip() or "Non renseigne" for v in values if v is not None)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [{"label": label, "count": n} for label, n in ranked[:limit]]


def _summarize_events(items: list[Any]) -> tuple[list[dict[str, Any]], dict[str, int]]:
    events = [i for i in items if isinstance(i, dict)]
    ordered = sorted(events, key=lambda e: _date_key(e.get("date_debut_evt") or e.get("date")), reverse=True)
    recent = [
        {
            "label": str(e.get("libelle_risque_jo") or e.get("libelle") or "Evenement"),
            "start": e.get("date_debut_evt") or e.get("date"),
            "end": e.get("date_fin_evt"),
        }
        for e in ordered[:TOP_EVENTS]
    ]
    by_type = {r["label"]: r["count"] for r in rank_counts((e.get("libelle_risque_jo") for e in events), 5)}
    return recent, by_type


def _risk_facts(risks: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in RISK_KEYS:
        record = _dict(risks.get(key))
        total = to_int(record.get("total"))
        entry: dict[str, Any] = {
            "total": total if total is not None and total > 0 else 0,
            "label": record.get("label") or None,
            "source": record.get("source") or None,
        }
        if key == "disaster_history":
            recent, by_type = _summarize_events(_list(record.get("items")))
            entry["recent_events"] = recent
            entry["by_type"] = by_type or dict(_dict(record.get("summary")))
        out[key] = entry
    return out


def _trade_facts(trade: dict[str, Any]) -> dict[str, Any]:
    details = []
    for d in _list(trade.get("details"))[-MAX_SERIES:]:
        d = _dict(d)
        year, total = to_int(d.get("year")), to_float(d.get("total_value_m_eur"))
        if year is not None and total is not None:
            details.append({"year": year, "total_value_m_eur": total})
    growth = None
    if len(details) >= 2 and details[0]["total_value_m_eur"]:
        first, last = details[0]["total_value_m_eur"], details[-1]["total_value_m_eur"]
        growth = round((last - first) / abs(first) * 100, 2)
    return {
        "details": details,
        "latest_total_m_eur": details[-1]["total_value_m_eur"] if details else None,
        "growth_pct": growth,
    }


def _sales_facts(sales: dict[str, Any]) -> dict[str, Any]:
    details = []
    for d in _list(sales.get("details"))[-MAX_SERIES:]:
        d = _dict(d)
        year, pct = to_int(d.get("year")), to_float(d.get("average_growth_pct"))
        if year is not None and pct is not None:
            details.append({"year": year, "average_growth_pct": pct})
    return {"average_growth_pct": to_float(sales.get("average_growth_pct")), "details": details}


def _production_facts(rows: Any) -> list[dict[str, Any]]:
    out = []
    for r in _list(rows)[-MAX_SERIES:]:
        r = _dict(r)
        year = to_int(r.get("year"))
        if year is None:
            continue
        out.append({"year": year, "surface_ha": to_float(r.get("surface_ha")), "farms": to_int(r.get("farms"))})
    return out


def build_facts(context: Any, operators: Iterable[Any] | None = None) -> dict[str, Any]:
    ops_source = operators if operators is not None else getattr(context, "operators", ())
    ctx = context.as_dict() if hasattr(context, "as_dict") else _dict(context)
    meta, geo, competition = _dict(ctx.get("meta")), _dict(ctx.get("geo")), _dict(ctx.get("competition"))
    ops = [_operator_dict(op) for op in (ops_source or ())]
    ops = [op for op in ops if op]

    total_operators = to_int(competition.get("total_operators"))
    if total_operators is None:
        total_operators = len(ops)
    if ops:
        top_activities = rank_counts((op.get("activity") for op in ops), TOP_ACTIVITIES)
        top_categories = rank_counts((op.get("category") for op in ops), TOP_ACTIVITIES)
    else:
        top_activities = [
            {"label": k, "count": n}
            for k, n in sorted(
                ((str(k), to_int(v) or 0) for k, v in _dict(competition.get("activity_breakdown")).items()),
                key=lambda kv: (-kv[1], kv[0]),
            )[:TOP_ACTIVITIES]
        ]
        top_categories = []

    macro = {
        str(k): [_dict(p) for p in _list(v)][-MAX_MACRO:]
        for k, v in _dict(ctx.get("macro")).items()
    }

    return {
        "place": {
            "city": geo.get("name") or meta.get("place"),
            "segment": meta.get("segment") or "",
            "code": geo.get("code"),
            "department": geo.get("department_code"),
            "region": geo.get("region_name"),
            "population": to_int(geo.get("population")),
        },
        "competition": {
            "total_operators": total_operators,
            "direct_competitors": to_int(competition.get("direct_competitors")) or 0,
            "top_activities": top_activities,
            "top_categories": top_categories,
            "sample_operators": [
                {
                    "name": op.get("name"),
                    "activity": op.get("activity"),
                    "city": op.get("city"),
                    "labels": _list(op.get("labels"))[:3],
                }
                for op in ops[:TOP_OPERATORS]
            ],
        },
        "risks": _risk_facts(_dict(ctx.get("risks"))),
        "production": {
            "regional": _production_facts(ctx.get("regional_production")),
            "national": _production_facts(ctx.get("national_production")),
        },
        "sales": _sales_facts(_dict(ctx.get("sales_trend"))),
        "trade": _trade_facts(_dict(ctx.get("trade_trend"))),
        "macro": macro,
    }
