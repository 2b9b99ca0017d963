"""Domain errors raised by the batch engine.

Each error carries the HTTP status it maps to; the global handlers in
``app.middleware.error_handler`` turn them into JSON responses.
"""
from typing import Any, Dict


class BatchEngineError(Exception):
    """Base class for batch engine errors"""
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message}


class InvalidBatchRequest(BatchEngineError):
    status_code = 400


class InvalidStyleConfiguration(BatchEngineError):
    status_code = 400


class UnauthorizedOrNotFound(BatchEngineError):
    status_code = 404

    def __init__(self, message: str = "Some products not found or unauthorized"):
        super().__init__(message)


class PresetNotFound(BatchEngineError):
    status_code = 404

    def __init__(self, preset_id: str):
        super().__init__(f"Preset not found: {preset_id}")
        self.preset_id = preset_id


class BatchJobNotFound(BatchEngineError):
    status_code = 404

    def __init__(self, batch_job_id: str):
        super().__init__("Batch job not found")
        self.batch_job_id = batch_job_id


class InsufficientCredits(BatchEngineError):
    status_code = 402

    def __init__(self, needed: int, available: int):
        super().__init__("Insufficient credits")
        self.needed = needed
        self.available = available

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "needed": self.needed, "available": self.available}


class DispatchError(BatchEngineError):
    status_code = 500
