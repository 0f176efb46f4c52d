import importlib.util
import sys
from pathlib import Path

from biomarket.services.operator_directory import OperatorDirectory, operator_from_agencebio
from biomarket.services.statistics_service import StatisticsService

SCRIPTS_DIR = Path(__file__).resolve().parents[1] / "scripts"


def _load(name):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_build_stats_db_from_csv(tmp_path, monkeypatch):
    build_stats_db = _load("build_stats_db")
    (tmp_path / "production.csv").write_text(
        "annee,territoire,surface_totale_ha,nb_fermes\n2022,Bretagne,120.5,12\n2023,Bretagne,130,13\n2023,National,5000,400\n",
        encoding="utf-8",
    )
    (tmp_path / "ventes.csv").write_text("circuit,annee,taux_evolution_pct\nGMS,2023,0.031\n", encoding="utf-8")
    (tmp_path / "commerce.csv").write_text(
        "famille_produit,flux_type,origine_dest,annee,valeur_M_eur\nFruits,Import,UE,2023,42.5\n", encoding="utf-8"
    )
    out = tmp_path / "stats.db"
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "build_stats_db.py",
            "--production", str(tmp_path / "production.csv"),
            "--ventes", str(tmp_path / "ventes.csv"),
            "--commerce", str(tmp_path / "commerce.csv"),
            "--output", str(out),
        ],
    )
    build_stats_db.main()

    stats = StatisticsService(out).collect_sync("Bretagne")
    assert stats["regional_production"] == [
        {"year": 2022, "surface_ha": 120.5, "farms": 12},
        {"year": 2023, "surface_ha": 130.0, "farms": 13},
    ]
    assert stats["national_production"] == [{"year": 2023, "surface_ha": 5000.0, "farms": 400}]
    assert stats["sales_trend"]["average_growth_pct"] == 3.1
    assert stats["trade_trend"]["details"][0]["total_value_m_eur"] == 42.5


def test_fetched_operators_load_into_directory():
    fetch_operators = _load("fetch_operators")
    items = [
        {
            "numeroBio": "1",
            "denominationcourante": "Le Champ Bio",
            "adressesOperateurs": [{"ville": "Brignais", "codePostal": "69530"}],
            "activites": [{"nom": "Production"}],
            "productions": [{"nom": "Blé tendre"}],
        },
        {"numeroBio": "2", "raisonSociale": "Sans adresse"},
    ]
    grouped = fetch_operators.group_by_city([operator_from_agencebio(i) for i in items])
    assert list(grouped) == ["Brignais"]

    found = OperatorDirectory.from_payload(grouped).find_by_city("brignais")
    assert [op.name for op in found] == ["Le Champ Bio"]
    assert found[0].segments == ("Blé tendre",)
    assert found[0].postal_code == "69530"
