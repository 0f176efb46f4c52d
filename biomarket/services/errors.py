from __future__ import annotations


class AnalysisError(Exception):
    """Base class for failures surfaced to the caller of an analysis."""

    kind = "analysis_error"

    def to_detail(self) -> dict[str, str]:
        return {"error": self.kind, "message": str(self)}


class MissingFieldError(AnalysisError):
    kind = "missing_field"

    def __init__(self, field: str):
        super().__init__(f"Le champ '{field}' est requis")
        self.field = field


class GeoLookupError(AnalysisError):
    kind = "geo_lookup_failed"


class ModelOutputError(AnalysisError):
    """Model completion was unusable. Never leaves the synthesis step."""

    kind = "invalid_model_output"
