"""Exception taxonomy shared by the engine services."""

from typing import Any, Dict, Optional


class EngineException(Exception):
    """Base exception for the network engine"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses and batch reports"""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(EngineException):
    """Malformed input (feedback, out-of-range scores). Never persisted."""


class NotFoundError(EngineException):
    """A contact, candidate or opportunity id does not exist."""


class ConflictError(EngineException):
    """The requested transition is not allowed from the current state."""


class PartialBatchFailure(EngineException):
    """A single chunk of a batch failed; the batch itself carries on."""

    def __init__(self, message: str, chunk_index: int, item_ids=None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.chunk_index = chunk_index
        self.item_ids = list(item_ids or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["chunk"] = self.chunk_index
        data["item_ids"] = self.item_ids
        return data


class LLMError(EngineException):
    """LLM-specific errors"""

    def __init__(self, message: str, error_type: str = "llm_error", **kwargs):
        super().__init__(message, **kwargs)
        self.error_type = error_type
