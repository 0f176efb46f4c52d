#!/usr/bin/env python3
from __future__ import annotations

import argparse
import csv
import sqlite3
import sys
from pathlib import Path

# Allow running as: python scripts/build_stats_db.py
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from biomarket.config import settings

TABLES: dict[str, tuple[str, ...]] = {
    "production_db": ("annee", "territoire", "surface_totale_ha", "nb_fermes"),
    "ventes_db": ("circuit", "annee", "taux_evolution_pct"),
    "commerce_db": ("famille_produit", "flux_type", "origine_dest", "annee", "valeur_M_eur"),
}


def sniff_dialect(sample: str):
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t")
    except csv.Error:
        return csv.excel


def read_rows(path: Path, columns: tuple[str, ...]) -> list[tuple[str | None, ...]]:
    text = path.read_text(encoding="utf-8-sig")
    reader = csv.DictReader(text.splitlines(), dialect=sniff_dialect(text[:4096]))
    fields = {(f or "").strip().lower(): f for f in reader.fieldnames or []}
    missing = [c for c in columns if c.lower() not in fields]
    if missing:
        raise SystemExit(f"{path}: missing columns {', '.join(missing)}")
    rows: list[tuple[str | None, ...]] = []
    for r in reader:
        row = tuple((r.get(fields[c.lower()]) or "").strip() or None for c in columns)
        if any(v is not None for v in row):
            rows.append(row)
    return rows


def create_table(conn: sqlite3.Connection, table: str, columns: tuple[str, ...]) -> None:
    conn.execute(f"DROP TABLE IF EXISTS {table}")
    conn.execute(f"CREATE TABLE {table} ({', '.join(columns)})")


def load_table(conn: sqlite3.Connection, table: str, columns: tuple[str, ...], path: Path) -> int:
    rows = read_rows(path, columns)
    placeholders = ", ".join("?" for _ in columns)
    conn.executemany(f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})", rows)
    return len(rows)


def main() -> None:
    parser = argparse.ArgumentParser(description="Build the local statistics store from CSV exports")
    parser.add_argument("--production", required=True, help="CSV with annee, territoire, surface_totale_ha, nb_fermes")
    parser.add_argument("--ventes", required=True, help="CSV with circuit, annee, taux_evolution_pct")
    parser.add_argument("--commerce", required=True, help="CSV with famille_produit, flux_type, origine_dest, annee, valeur_M_eur")
    parser.add_argument("--output", default=str(settings.stats_db_path))
    args = parser.parse_args()

    sources = {
        "production_db": Path(args.production),
        "ventes_db": Path(args.ventes),
        "commerce_db": Path(args.commerce),
    }
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(out)
    try:
        for table, columns in TABLES.items():
            create_table(conn, table, columns)
            count = load_table(conn, table, columns, sources[table])
            print(f"{table}: {count} rows from {sources[table]}")
        conn.commit()
    finally:
        conn.close()
    print(f"done. -> {out}")


if __name__ == "__main__":
    main()
