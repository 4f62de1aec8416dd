"""Schema package exports."""

from .push import DispatchRequestBody, DispatchResponse, SkippedResponse

__all__ = ["DispatchRequestBody", "DispatchResponse", "SkippedResponse"]
