from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")


@dataclass(frozen=True)
class Settings:
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_chat_model: str = os.getenv("OLLAMA_CHAT_MODEL", "deepseek-r1:8b")
    ollama_allowed_models: str = os.getenv("OLLAMA_ALLOWED_MODELS", "deepseek-r1:8b,llama3,mistral")
    fallback_model_label: str = os.getenv("FALLBACK_MODEL_LABEL", "fallback-rules")
    model_timeout: float = float(os.getenv("MODEL_TIMEOUT", "60"))
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "15"))
    http_user_agent: str = os.getenv("HTTP_USER_AGENT", "BioCollector/1.0")
    geo_api_url: str = os.getenv("GEO_API_URL", "https://geo.api.gouv.fr/communes")
    georisques_api_url: str = os.getenv("GEORISQUES_API_URL", "https://www.georisques.gouv.fr/api/v1")
    world_bank_api_url: str = os.getenv("WORLD_BANK_API_URL", "https://api.worldbank.org/v2")
    world_bank_country: str = os.getenv("WORLD_BANK_COUNTRY", "FRA")
    stats_db_path: str = os.getenv("STATS_DB_PATH", str(ROOT_DIR / "data" / "stats.db"))
    reference_data_path: str = os.getenv(
        "REFERENCE_DATA_PATH", str(ROOT_DIR / "data" / "reference" / "donnees-bio.json")
    )
    operators_data_path: str = os.getenv(
        "OPERATORS_DATA_PATH", str(ROOT_DIR / "data" / "reference" / "operateurs-locaux.json")
    )
    artifacts_dir: str = os.getenv("ARTIFACTS_DIR", str(ROOT_DIR / "data" / "artifacts"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def allowed_models(self) -> list[str]:
        out: list[str] = [self.ollama_chat_model]
        for m in self.ollama_allowed_models.split(","):
            m = m.strip()
            if m and m not in out:
                out.append(m)
        return out

    def resolve_model(self, requested: str | None) -> str:
        name = (requested or "").strip()
        if name and name in self.allowed_models():
            return name
        return self.ollama_chat_model

    def effective_model_timeout(self) -> float:
        # never shorter than the geo/risk call timeout
        return max(self.model_timeout, self.http_timeout)


settings = Settings()
