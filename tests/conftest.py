from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import httpx
import pytest

from biomarket.config import Settings

GEO_URL = "https://geo.api.gouv.fr/communes"
GEORISQUES_URL = "https://www.georisques.gouv.fr/api/v1"
WORLD_BANK_URL = "https://api.worldbank.org/v2"
OLLAMA_URL = "http://localhost:11434"

REGION = {"code": "84", "nom": "Auvergne-Rhône-Alpes"}

LYON_COMMUNES = [
    {"nom": "Sainte-Foy-lès-Lyon", "code": "69202", "population": 21834, "codeDepartement": "69", "codeRegion": "84", "region": REGION},
    {"nom": "Lyon", "code": "69123", "population": 522250, "codeDepartement": "69", "codeRegion": "84", "region": REGION},
]

REFERENCE = {
    "departements": {
        "06 - Alpes-Maritimes": {
            "risque_pollution_basol": "Faible",
            "nb_sites_basol": 40,
            "risque_inondation_azi": "Élevé",
            "nb_zones_azi": 22,
        },
        "69 - Rhône": {
            "risque_pollution_basol": "Élevé",
            "nb_sites_basol": 412,
            "risque_inondation_azi": "Modéré",
            "nb_zones_azi": 37,
            "hist_secheresse_catnat": 18,
            "hist_inondation_catnat": 54,
        },
        "2A Corse-du-Sud": {"risque_pollution_basol": "Faible", "nb_sites_basol": 9},
    }
}

OPERATORS = {
    "Lyon": [
        {
            "id": "LY-001",
            "nom": "La Ferme des Monts d'Or",
            "activite": "Maraîchage",
            "categorie": "Production",
            "labels": ["AB", "Bio Cohérence"],
            "segments": ["maraichage", "legumes"],
        },
        {
            "id": "LY-002",
            "nom": "Biocoop Croix-Rousse",
            "activite": "Distribution",
            "categorie": "Distribution",
            "labels": "AB; Ecocert",
            "segments": ["epicerie"],
        },
        {
            "id": "LY-003",
            "nom": "Boulangerie du Levain",
            "activite": "Boulangerie",
            "categorie": "Transformation",
            "labels": ["AB"],
        },
    ],
    "Saint-Étienne": [
        {"id": "SE-001", "nom": "Les Vergers du Pilat", "activite": "Arboriculture", "categorie": "Production"},
    ],
}

VALID_REPORT = {
    "summary": "Le marché du maraîchage bio à Lyon est porteur.",
    "kpis": {
        "marche": "180.2 M€",
        "croissance": "+2.7%",
        "acteurs": 1,
        "potentiel": "modéré",
        "trends": {"marche": "Forte", "croissance": "Faible", "acteurs": "Limité", "potentiel": "Modéré"},
    },
    "keyPoints": ["Un producteur {maraîcher} recensé."],
    "actors": [{"name": "La Ferme des Monts d'Or", "type": "Maraîchage", "location": "Lyon", "labels": ["AB"]}],
    "recommendations": [{"title": "Partenariats", "desc": "Travailler avec les maraîchers.", "comment": "Offre limitée."}],
    "chartData": {"actorsByActivity": {"labels": ["Maraîchage"], "values": [1]}},
}

MODEL_OUTPUT = (
    "<think>Je dois produire un objet {JSON} valide.</think>\n```json\n"
    + json.dumps(VALID_REPORT, ensure_ascii=False)
    + "\n```"
)


def world_bank_payload(values: dict[int, float | None]) -> list[Any]:
    rows = [{"date": str(year), "value": value} for year, value in sorted(values.items(), reverse=True)]
    return [{"page": 1, "pages": 1, "per_page": 8, "total": len(rows)}, rows]


class FakeApis:
    """Routes every outbound call of the analysis pipeline to canned responses."""

    def __init__(self):
        self.communes: list[dict[str, Any]] = list(LYON_COMMUNES)
        self.geo_status = 200
        self.risk_payloads: dict[str, Any] = {}
        self.risk_status: dict[str, int] = {}
        self.world_bank: dict[str, Any] = {
            "SP.POP.TOTL": world_bank_payload({2021: 67.7e6, 2022: 67.9e6, 2023: 68.1e6}),
            "NY.GDP.MKTP.KD.ZG": world_bank_payload({2021: 6.4, 2022: 2.5, 2023: 0.9}),
            "AG.LND.AGRI.ZS": world_bank_payload({2020: 52.3, 2021: 52.1}),
        }
        self.world_bank_status = 200
        self.ollama_up = True
        self.ollama_models = ["deepseek-r1:8b", "llama3"]
        self.ollama_response: str | None = MODEL_OUTPUT
        self.calls: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        host, path = request.url.host, request.url.path
        if host == "geo.api.gouv.fr":
            if self.geo_status != 200:
                return httpx.Response(self.geo_status, json={"message": "indisponible"})
            return httpx.Response(200, json=self.communes)
        if host == "www.georisques.gouv.fr":
            status = self.risk_status.get(path, 200)
            if status != 200:
                return httpx.Response(status, json={"message": "indisponible"})
            return httpx.Response(200, json=self.risk_payloads.get(path, {"data": [], "results": 0}))
        if host == "api.worldbank.org":
            if self.world_bank_status != 200:
                return httpx.Response(self.world_bank_status)
            code = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json=self.world_bank.get(code, [{"page": 1}, []]))
        if host == "localhost":
            if not self.ollama_up:
                raise httpx.ConnectError("connection refused", request=request)
            if path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": m} for m in self.ollama_models]})
            if path == "/api/generate":
                if self.ollama_response is None:
                    return httpx.Response(500, json={"error": "model crashed"})
                return httpx.Response(200, json={"response": self.ollama_response, "done": True})
        return httpx.Response(404)

    def paths(self, host: str) -> list[str]:
        return [r.url.path for r in self.calls if r.url.host == host]


def create_stats_db(path: Path) -> Path:
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE production_db (annee, territoire, surface_totale_ha, nb_fermes)")
        conn.execute("CREATE TABLE ventes_db (circuit, annee, taux_evolution_pct)")
        conn.execute("CREATE TABLE commerce_db (famille_produit, flux_type, origine_dest, annee, valeur_M_eur)")
        production = [(str(y), "Auvergne-Rhône-Alpes", 1000.0 + 100 * (y - 2016), 50 + (y - 2016)) for y in range(2016, 2024)]
        production += [(str(y), "National", 20000.0 + y - 2019, 1000) for y in range(2019, 2024)]
        production += [("2024", "National", "n/a", 1200)]
        conn.executemany("INSERT INTO production_db VALUES (?, ?, ?, ?)", production)
        conn.executemany(
            "INSERT INTO ventes_db VALUES (?, ?, ?)",
            [
                ("GMS", "2021", 0.05),
                ("Specialise", "2021", 0.07),
                ("GMS", "2022", 0.04),
                ("GMS", "2023", -0.02),
                ("Vente directe", "2023", None),
            ],
        )
        conn.executemany(
            "INSERT INTO commerce_db VALUES (?, ?, ?, ?, ?)",
            [
                ("Fruits", "Import", "UE", "2022", 100.5),
                ("Fruits", "Export", "UE", "2022", 50.0),
                ("Fruits", "Import", "UE", "2023", 120.0),
                ("Legumes", "Export", "Hors UE", "2023", 60.25),
            ],
        )
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def stats_db(tmp_path: Path) -> Path:
    return create_stats_db(tmp_path / "stats.db")


@pytest.fixture
def reference_file(tmp_path: Path) -> Path:
    p = tmp_path / "donnees-bio.json"
    p.write_text(json.dumps(REFERENCE, ensure_ascii=False), encoding="utf-8")
    return p


@pytest.fixture
def operators_file(tmp_path: Path) -> Path:
    p = tmp_path / "operateurs-locaux.json"
    p.write_text(json.dumps(OPERATORS, ensure_ascii=False), encoding="utf-8")
    return p


@pytest.fixture
def settings(tmp_path: Path, stats_db: Path, reference_file: Path, operators_file: Path) -> Settings:
    return Settings(
        ollama_base_url=OLLAMA_URL,
        ollama_chat_model="deepseek-r1:8b",
        ollama_allowed_models="deepseek-r1:8b,llama3",
        fallback_model_label="fallback-rules",
        model_timeout=5.0,
        http_timeout=1.0,
        geo_api_url=GEO_URL,
        georisques_api_url=GEORISQUES_URL,
        world_bank_api_url=WORLD_BANK_URL,
        world_bank_country="FRA",
        stats_db_path=str(stats_db),
        reference_data_path=str(reference_file),
        operators_data_path=str(operators_file),
        artifacts_dir=str(tmp_path / "artifacts"),
    )


@pytest.fixture
def fake_apis() -> FakeApis:
    return FakeApis()


@pytest.fixture
async def http_client(fake_apis: FakeApis):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_apis.handler)) as client:
        yield client
