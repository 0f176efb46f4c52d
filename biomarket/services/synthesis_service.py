from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from biomarket.config import Settings
from biomarket.services.errors import ModelOutputError
from biomarket.services.fallback_report import build_fallback_report
from biomarket.services.ollama_client import OllamaClient

logger = logging.getLogger(__name__)

REQUIRED_KEYS: tuple[str, ...] = ("summary", "kpis", "keyPoints", "actors", "recommendations", "chartData")
_EXPECTED_TYPES: dict[str, type | tuple[type, ...]] = {
    "summary": str,
    "kpis": dict,
    "keyPoints": list,
    "actors": list,
    "recommendations": list,
    "chartData": dict,
}
_THINK_RE = re.compile(r"<think>.*?</think>", flags=re.S | re.I)
_SEP = (",", ":")


def strip_reasoning(text: str) -> str:
    return _THINK_RE.sub("", text or "")


def extract_json_span(text: str) -> str | None:
    """First balanced {...} span in text; braces inside JSON strings are ignored."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # unbalanced from this brace: try the next one
        start = text.find("{", start + 1)
    return None


def validate_report(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ModelOutputError("La reponse du modele n'est pas un objet JSON")
    missing = [k for k in REQUIRED_KEYS if k not in payload]
    if missing:
        raise ModelOutputError(f"Cles manquantes dans la reponse du modele: {', '.join(missing)}")
    wrong = [k for k, t in _EXPECTED_TYPES.items() if not isinstance(payload[k], t)]
    if wrong:
        raise ModelOutputError(f"Types invalides dans la reponse du modele: {', '.join(wrong)}")
    return payload


def parse_report(raw: str) -> dict[str, Any]:
    cleaned = strip_reasoning(raw).replace("```json", "").replace("```", "")
    span = extract_json_span(cleaned)
    if span is None:
        raise ModelOutputError("Aucun objet JSON dans la reponse du modele")
    try:
        payload = json.loads(span)
    except json.JSONDecodeError as e:
        raise ModelOutputError(f"JSON invalide dans la reponse du modele: {e}") from e
    return validate_report(payload)


def build_prompt(facts: dict[str, Any], segment: str, place: str, objective: str) -> str:
    return f"""
Tu es un expert en analyse de marche bio. Utilise UNIQUEMENT les donnees reelles fournies.

DONNEES (JSON compact):
{json.dumps(facts, ensure_ascii=False, separators=_SEP)}

Mission: analyser le segment "{segment}" a "{place}".
Objectif: {objective}

REGLES STRICTES:
1. Ne pas inventer ni modifier les chiffres fournis.
2. Si une donnee est absente, ecrire "Non disponible".
3. Si la croissance est negative, la garder negative.
4. potentiel: "très élevé" si croissance >= 8, "élevé" si >= 4, "modéré" si >= 1, sinon "sous tension".

Reponds en JSON pur (sans markdown) selon ce schema:
{{
  "summary": "string",
  "kpis": {{
    "marche": "string",
    "croissance": "string",
    "acteurs": 0,
    "potentiel": "string",
    "trends": {{"marche": "string", "croissance": "string", "acteurs": "string", "potentiel": "string"}}
  }},
  "keyPoints": ["string"],
  "actors": [{{"name": "string", "type": "string", "location": "string", "labels": ["string"]}}],
  "recommendations": [{{"title": "string", "desc": "string", "comment": "string"}}],
  "chartData": {{
    "actorsByActivity": {{"labels": ["string"], "values": [0]}},
    "tradeFlow": {{"labels": ["string"], "values": [0]}},
    "salesGrowth": {{"labels": ["string"], "values": [0]}}
  }}
}}
""".strip()


class SynthesisService:
    def __init__(self, client: OllamaClient, settings: Settings):
        self.client = client
        self.settings = settings

    async def _model_report(self, model: str, prompt: str) -> dict[str, Any]:
        timeout = self.settings.effective_model_timeout()
        raw = await asyncio.wait_for(self.client.generate(model, prompt, timeout=timeout), timeout=timeout)
        return parse_report(raw)

    async def synthesize(
        self,
        facts: dict[str, Any],
        *,
        segment: str,
        place: str,
        objective: str,
        model: str | None = None,
    ) -> dict[str, Any]:
        model_name = self.settings.resolve_model(model)
        if model and model_name != model.strip():
            logger.info("Model '%s' not allowed, using '%s'", model, model_name)
        prompt = build_prompt(facts, segment, place, objective)
        try:
            report = await self._model_report(model_name, prompt)
        except asyncio.TimeoutError:
            logger.warning("Model %s timed out, using fallback synthesis", model_name)
        except ModelOutputError as e:
            logger.warning("Model %s returned unusable output (%s), using fallback synthesis", model_name, e)
        except Exception as e:
            logger.warning("Model %s call failed (%s), using fallback synthesis", model_name, e)
        else:
            report["metadata"] = {"model": model_name, "source": "model"}
            return report
        return build_fallback_report(facts, segment, place, self.settings.fallback_model_label)
