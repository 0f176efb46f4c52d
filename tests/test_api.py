import asyncio
from dataclasses import replace

import httpx
import pytest
from fastapi.testclient import TestClient

from biomarket.main import app
from biomarket.services.analysis_service import build_analysis_service


@pytest.fixture
async def api(settings, http_client):
    app.state.analysis = build_analysis_service(settings, http_client)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await app.state.analysis.artifacts.drain()


async def test_analyze_accepts_french_field_names(api):
    resp = await api.post("/api/analyze", json={"secteur": "maraîchage", "place": "Lyon", "objectif": "Implantation"})
    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {"report", "context", "metadata"}
    assert body["metadata"]["segment"] == "maraîchage"
    assert body["metadata"]["objective"] == "Implantation"
    assert body["context"]["risks"]["code_commune"] == "69123"


async def test_analyze_model_outage_is_still_200(api, fake_apis):
    fake_apis.ollama_up = False
    resp = await api.post("/api/analyze", json={"segment": "maraîchage", "region": "Lyon"})
    assert resp.status_code == 200
    assert resp.json()["metadata"]["source"] == "fallback"


async def test_analyze_missing_region_is_400(api):
    resp = await api.post("/api/analyze", json={"segment": "maraîchage"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "missing_field"


async def test_analyze_geo_failure_is_502(api, fake_apis):
    fake_apis.communes = []
    resp = await api.post("/api/analyze", json={"segment": "maraîchage", "region": "Atlantide"})
    assert resp.status_code == 502
    assert resp.json()["detail"]["error"] == "geo_lookup_failed"


async def test_health_endpoint(api, fake_apis):
    fake_apis.ollama_up = False
    resp = await api.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "warning"
    assert body["ollama"] == "disconnected"


def test_app_starts_with_lifespan():
    with TestClient(app) as client:
        assert hasattr(app.state, "analysis")
        assert client.get("/openapi.json").json()["info"]["title"] == "BioMarket Insights"


async def test_model_timeout_still_returns_a_report(settings, fake_apis):
    async def slow_handler(request):
        if request.url.path == "/api/generate":
            await asyncio.sleep(1.0)
        return fake_apis.handler(request)

    fast = replace(settings, model_timeout=0.05, http_timeout=0.05)
    async with httpx.AsyncClient(transport=httpx.MockTransport(slow_handler)) as http:
        app.state.analysis = build_analysis_service(fast, http)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post("/api/analyze", json={"segment": "maraîchage", "region": "Lyon"})
        await app.state.analysis.artifacts.drain()

    assert resp.status_code == 200
    body = resp.json()
    assert body["metadata"]["source"] == "fallback"
    assert body["report"]["metadata"] == {"model": "fallback-rules", "source": "fallback"}


@pytest.mark.parametrize("body", [{"segment": None, "region": "Lyon"}, {"secteur": ["vin"], "place": "Lyon"}])
async def test_analyze_null_segment_is_400(api, body):
    resp = await api.post("/api/analyze", json=body)
    assert resp.status_code == 400
    assert resp.json()["detail"] == {"error": "missing_field", "message": "Le champ 'segment' est requis"}


async def test_analyze_numeric_region_reaches_geo_lookup(api, fake_apis):
    fake_apis.communes = []
    resp = await api.post("/api/analyze", json={"segment": "vin", "region": 69, "model": None})
    assert resp.status_code == 502
    assert resp.json()["detail"]["error"] == "geo_lookup_failed"
    assert fake_apis.calls[0].url.params["nom"] == "69"


async def test_health_with_malformed_model_list(settings, fake_apis):
    def handler(request):
        if request.url.path == "/api/tags":
            return httpx.Response(200, json=[])
        return fake_apis.handler(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        app.state.analysis = build_analysis_service(settings, http)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "warning"
    assert resp.json()["ollama"] == "disconnected"
