#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import requests

# Allow running as: python scripts/fetch_operators.py
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from biomarket.config import settings
from biomarket.services.operator_directory import OperatorRecord, operator_from_agencebio

AGENCE_BIO_API = "https://opendata.agencebio.org/api/gouv/operateurs/"
PAGE_SIZE = 1000


def fetch_page(department: str, start: int, timeout: float) -> dict[str, Any]:
    params = {"departements": department, "nb": PAGE_SIZE, "debut": start}
    resp = requests.get(
        AGENCE_BIO_API,
        params=params,
        headers={"User-Agent": settings.http_user_agent},
        timeout=timeout,
    )
    resp.raise_for_status()
    data = resp.json()
    return data if isinstance(data, dict) else {"items": data}


def fetch_department(department: str, max_pages: int, sleep: float, timeout: float) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for page in range(max_pages):
        data = fetch_page(department, page * PAGE_SIZE, timeout)
        batch = [x for x in data.get("items") or [] if isinstance(x, dict)]
        items.extend(batch)
        total = data.get("nbTotal")
        if not batch or len(batch) < PAGE_SIZE or (isinstance(total, int) and len(items) >= total):
            break
        time.sleep(max(0.0, sleep))
    return items


def to_local_entry(op: OperatorRecord) -> dict[str, Any]:
    return {
        "id": op.id,
        "nom": op.name,
        "activite": op.activity,
        "categorie": op.category,
        "ville": op.city,
        "labels": list(op.labels),
        "activites": list(op.activities),
        "categories": list(op.categories),
        "segments": list(op.segments),
        "site": op.site,
        "contact": op.contact,
        "adresse": op.address,
        "code_postal": op.postal_code,
        "lat": op.latitude,
        "lon": op.longitude,
        "date_mise_a_jour": op.updated_at,
    }


def group_by_city(operators: list[OperatorRecord]) -> dict[str, list[dict[str, Any]]]:
    out: dict[str, list[dict[str, Any]]] = {}
    for op in operators:
        if not op.city:
            continue
        out.setdefault(op.city, []).append(to_local_entry(op))
    return dict(sorted(out.items()))


def main() -> None:
    parser = argparse.ArgumentParser(description="Download Agence Bio operators into the local dataset")
    parser.add_argument("departments", nargs="+", help="department codes, e.g. 69 33 2A")
    parser.add_argument("--output", default=str(settings.operators_data_path))
    parser.add_argument("--max-pages", type=int, default=20)
    parser.add_argument("--sleep", type=float, default=0.3, help="delay between pages (seconds)")
    parser.add_argument("--timeout", type=float, default=30.0)
    parser.add_argument("--merge", action="store_true", help="keep cities already present in the output file")
    args = parser.parse_args()

    operators: list[OperatorRecord] = []
    fail = 0
    for dep in args.departments:
        try:
            items = fetch_department(dep, args.max_pages, args.sleep, args.timeout)
        except (requests.RequestException, ValueError) as e:
            fail += 1
            print(f"fail: department {dep} ({e})")
            continue
        operators.extend(operator_from_agencebio(item) for item in items)
        print(f"department {dep}: {len(items)} operators")

    grouped = group_by_city(operators)
    out = Path(args.output)
    if args.merge and out.exists():
        existing = json.loads(out.read_text(encoding="utf-8"))
        if isinstance(existing, dict):
            grouped = {**existing, **grouped}

    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(grouped, ensure_ascii=False, indent=2), encoding="utf-8")
    stamp = datetime.now(UTC).isoformat().replace("+00:00", "Z")
    print(f"done. operators={len(operators)}, cities={len(grouped)}, fail={fail}, at={stamp} -> {out}")


if __name__ == "__main__":
    main()
