from __future__ import annotations

import httpx


class OllamaClient:
    def __init__(self, base_url: str, http: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self._http = http

    async def _post_json(self, path: str, payload: dict, timeout: float | None = None) -> dict:
        url = f"{self.base_url}{path}"
        kwargs = {"timeout": timeout} if timeout is not None else {}
        resp = await self._http.post(url, json=payload, **kwargs)
        resp.raise_for_status()
        return resp.json()

    async def generate(
        self,
        model: str,
        prompt: str,
        temperature: float = 0.1,
        timeout: float | None = None,
    ) -> str:
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, "top_p": 0.5},
        }
        out = await self._post_json("/api/generate", payload, timeout=timeout)
        return str(out.get("response") or "").strip()

    async def list_models(self, timeout: float = 5.0) -> list[str]:
        resp = await self._http.get(f"{self.base_url}/api/tags", timeout=timeout)
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise ValueError(f"unexpected /api/tags payload: {type(payload).__name__}")
        models = payload.get("models")
        if not isinstance(models, list):
            models = []
        return [str(m.get("name")) for m in models if isinstance(m, dict) and m.get("name")]
