import json
from datetime import UTC, datetime

from biomarket.services.artifact_store import ArtifactStore


def test_path_naming(tmp_path):
    store = ArtifactStore(tmp_path)
    path = store.path_for("response", "abc/123", when=datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC))
    assert path == tmp_path / "response_abc-123_20240501T120000000000Z.json"


async def test_scheduled_writes_land_on_disk(tmp_path):
    store = ArtifactStore(tmp_path / "artifacts")
    store.schedule("request", "r1", {"segment": "vin", "place": "Bordeaux", "at": datetime(2024, 1, 1)})
    await store.drain()

    files = list((tmp_path / "artifacts").glob("request_r1_*.json"))
    assert len(files) == 1
    payload = json.loads(files[0].read_text(encoding="utf-8"))
    assert payload["place"] == "Bordeaux"
    assert payload["at"].startswith("2024-01-01")


async def test_write_failures_are_not_raised(tmp_path, caplog):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = ArtifactStore(blocker)

    task = store.schedule("response", "r2", {"ok": True})
    await store.drain()

    assert task.done() and task.exception() is None
    assert "Could not persist response artifact" in caplog.text
