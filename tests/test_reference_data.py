import json

from biomarket.services.reference_data import ReferenceDataset, department_code_of_key

from conftest import REFERENCE


def test_department_code_of_key():
    assert department_code_of_key("69 - Rhône") == "69"
    assert department_code_of_key("13-Bouches-du-Rhône") == "13"
    assert department_code_of_key("2a Corse-du-Sud") == "2A"
    assert department_code_of_key("974 La Réunion") == "974"
    assert department_code_of_key("6") == "06"
    assert department_code_of_key("Rhône") is None


def test_lookup_is_exact_not_prefix():
    dataset = ReferenceDataset(REFERENCE["departements"])
    assert dataset.department("6")["label"] == "06 - Alpes-Maritimes"
    assert dataset.department("69")["label"] == "69 - Rhône"
    assert dataset.department("2A")["nb_sites_basol"] == 9
    assert dataset.department("7") is None
    assert dataset.department(None) is None


def test_duplicate_codes_keep_first_entry():
    dataset = ReferenceDataset({"69 - Rhône": {"nb_sites_basol": 1}, "69-Rhône (bis)": {"nb_sites_basol": 2}})
    assert len(dataset) == 1
    assert dataset.department("69")["nb_sites_basol"] == 1


def test_risk_fallback_values():
    fallback = ReferenceDataset(REFERENCE["departements"]).risk_fallback("69")
    assert fallback["pollution_label"] == "Élevé"
    assert fallback["pollution_total"] == 412
    assert fallback["flood_label"] == "Modéré"
    assert fallback["catnat"] == {"secheresse": 18, "inondation": 54}
    assert fallback["has_catnat"] is True

    no_catnat = ReferenceDataset(REFERENCE["departements"]).risk_fallback("06")
    assert no_catnat["has_catnat"] is False


def test_from_file_tolerates_missing_and_broken_files(tmp_path):
    assert len(ReferenceDataset.from_file(tmp_path / "absent.json")) == 0

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    assert len(ReferenceDataset.from_file(broken)) == 0

    good = tmp_path / "good.json"
    good.write_text(json.dumps(REFERENCE, ensure_ascii=False), encoding="utf-8")
    assert len(ReferenceDataset.from_file(good)) == 3
