from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections import defaultdict
from pathlib import Path
from typing import Any

from biomarket.services.normalize import average, normalize_year, to_float

logger = logging.getLogger(__name__)

MAX_YEARS = 5

PRODUCTION_SQL = """
    SELECT annee, surface_totale_ha, nb_fermes
    FROM production_db
    WHERE territoire LIKE ? COLLATE NOCASE
"""
SALES_SQL = "SELECT circuit, annee, taux_evolution_pct FROM ventes_db"
TRADE_SQL = "SELECT famille_produit, flux_type, origine_dest, annee, valeur_M_eur FROM commerce_db"


def _recent_years(years: set[int]) -> list[int]:
    return sorted(sorted(years, reverse=True)[:MAX_YEARS])


def _period(years: list[int]) -> dict[str, int] | None:
    return {"start": years[0], "end": years[-1]} if years else None


def summarize_production(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    by_year: dict[int, dict[str, float]] = defaultdict(lambda: {"surface_ha": 0.0, "farms": 0.0})
    for row in rows:
        year = normalize_year(row.get("annee"))
        if year is None:
            continue
        surface = to_float(row.get("surface_totale_ha"))
        farms = to_float(row.get("nb_fermes"))
        if surface is None:
            continue
        agg = by_year[year]
        agg["surface_ha"] += surface
        agg["farms"] += farms or 0.0
    return [
        {
            "year": year,
            "surface_ha": round(by_year[year]["surface_ha"], 2),
            "farms": int(by_year[year]["farms"]),
        }
        for year in _recent_years(set(by_year))
    ]


def summarize_sales(rows: list[dict[str, Any]]) -> dict[str, Any]:
    by_year: dict[int, list[float]] = defaultdict(list)
    for row in rows:
        year = normalize_year(row.get("annee"))
        rate = to_float(row.get("taux_evolution_pct"))
        if year is None or rate is None:
            continue
        by_year[year].append(rate)

    years = _recent_years(set(by_year))
    if not years:
        return {"period": None, "average_growth_pct": None, "details": [], "summary": "Pas de donnees ventes"}

    # stored as fractions (0.052 == 5.2 %)
    details = [
        {"year": year, "average_growth_pct": round(average(by_year[year]) * 100, 2)}
        for year in years
    ]
    return {
        "period": _period(years),
        "average_growth_pct": round(average(d["average_growth_pct"] for d in details), 2),
        "details": details,
    }


def summarize_trade(rows: list[dict[str, Any]]) -> dict[str, Any]:
    totals: dict[int, float] = defaultdict(float)
    flows: dict[int, dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for row in rows:
        year = normalize_year(row.get("annee"))
        value = to_float(row.get("valeur_M_eur"))
        if year is None or value is None:
            continue
        totals[year] += value
        flow = str(row.get("flux_type") or "autre").strip().lower() or "autre"
        flows[year][flow] += value

    years = _recent_years(set(totals))
    if not years:
        return {
            "period": None,
            "details": [],
            "summary": "Donnees commerce indisponibles pour les 5 dernieres annees",
        }
    return {
        "period": _period(years),
        "details": [
            {
                "year": year,
                "total_value_m_eur": round(totals[year], 2),
                "by_flow": {k: round(v, 2) for k, v in sorted(flows[year].items())},
            }
            for year in years
        ],
    }


def empty_statistics() -> dict[str, Any]:
    return {
        "regional_production": [],
        "national_production": [],
        "sales_trend": summarize_sales([]),
        "trade_trend": summarize_trade([]),
    }


class StatisticsService:
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        if not self.db_path.exists():
            raise FileNotFoundError(f"statistics store not found: {self.db_path}")
        conn = sqlite3.connect(f"file:{self.db_path.as_posix()}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _query(conn: sqlite3.Connection, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]

    def _safe_query(self, conn: sqlite3.Connection, name: str, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        try:
            return self._query(conn, sql, params)
        except sqlite3.Error as e:
            logger.warning("Statistics query '%s' failed: %s", name, e)
            return []

    def collect_sync(self, region_name: str | None) -> dict[str, Any]:
        conn = self._connect()
        try:
            regional = self._safe_query(conn, "production_region", PRODUCTION_SQL, (region_name or "%",))
            national = self._safe_query(conn, "production_national", PRODUCTION_SQL, ("National",))
            sales = self._safe_query(conn, "ventes", SALES_SQL)
            trade = self._safe_query(conn, "commerce", TRADE_SQL)
        finally:
            conn.close()
        return {
            "regional_production": summarize_production(regional),
            "national_production": summarize_production(national),
            "sales_trend": summarize_sales(sales),
            "trade_trend": summarize_trade(trade),
        }

    async def collect(self, region_name: str | None) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self.collect_sync, region_name)
        except (OSError, sqlite3.Error) as e:
            logger.warning("Statistics store unavailable (%s): %s", self.db_path, e)
            return empty_statistics()
