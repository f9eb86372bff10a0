# lipid_errors.py
# Error taxonomy for the lipid engine.
#
# Hard failures (returned to the caller): ValidationError, and AlgorithmError
# only when every risk algorithm failed. Everything else is absorbed locally
# and annotated in the result payload.

from typing import Any, Dict, Optional


class LipidEngineError(Exception):
    code = "LIPID_ENGINE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class ValidationError(LipidEngineError):
    """Missing required field or out-of-range value. Blocks the pipeline before categorization."""

    code = "VALIDATION_ERROR"

    def __init__(self, field_errors: Dict[str, str]):
        self.field_errors = dict(field_errors)
        fields = ", ".join(sorted(self.field_errors))
        super().__init__(f"Invalid patient input: {fields}", {"fieldErrors": self.field_errors})


class AlgorithmError(LipidEngineError):
    code = "ALGORITHM_ERROR"

    def __init__(self, algorithm: str, message: str):
        self.algorithm = algorithm
        super().__init__(f"{algorithm}: {message}", {"algorithm": algorithm})


class EligibilityEvaluationError(LipidEngineError):
    code = "ELIGIBILITY_EVALUATION_ERROR"


class ConfigurationError(LipidEngineError):
    code = "CONFIGURATION_ERROR"
