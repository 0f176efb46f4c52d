from __future__ import annotations

from typing import Any
from pydantic import AliasChoices, BaseModel, Field, field_validator


class AnalyzeRequest(BaseModel):
    segment: str = Field(default="", validation_alias=AliasChoices("segment", "secteur"))
    region: str = Field(default="", validation_alias=AliasChoices("region", "place", "ville"))
    objective: str | None = Field(default=None, validation_alias=AliasChoices("objective", "objectif"))
    model: str | None = None

    # blank or missing values are rejected later as missing_field, not here
    @field_validator("segment", "region", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        if v is None or isinstance(v, (dict, list, bool)):
            return ""
        return str(v)

    @field_validator("objective", "model", mode="before")
    @classmethod
    def _coerce_optional_text(cls, v: Any) -> str | None:
        if v is None or isinstance(v, (dict, list, bool)):
            return None
        return str(v)


class AnalyzeResponse(BaseModel):
    report: dict[str, Any]
    context: dict[str, Any]
    metadata: dict[str, Any]


class HealthResponse(BaseModel):
    status: str
    ollama: str
    model: str
    timestamp: str
    message: str | None = None
    available_models: list[str] = Field(default_factory=list)
