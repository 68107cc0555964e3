"""Exception hierarchy for webhook ingestion and chat streaming.

Errors raised at the HTTP boundary carry a ``status_code`` so the API layer
can map them to responses without a lookup table. Tool and model errors are
recovered inside the chat stream and never reach the client as exceptions.
"""

from typing import Optional


class HookchatError(Exception):
    """Base class for all hookchat errors."""

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[dict] = None):
        self.message = message
        self.detail = detail or {}
        super().__init__(message)


class AuthenticationError(HookchatError):
    """Webhook signature missing or invalid. Never retried."""

    status_code = 401


class MethodNotAllowedError(HookchatError):
    status_code = 405


class InvalidPayloadError(HookchatError):
    """Webhook body is not a JSON object or fails validation."""

    status_code = 400


class MissingSecretError(HookchatError):
    """A required secret is not configured in the hosting environment."""

    status_code = 503

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is not configured", {"secret": name})


class PayloadProcessingError(HookchatError):
    """Processing of a verified, non-duplicate event failed.

    The event row is not written, so the sender may retry delivery with the
    same idempotency key.
    """

    status_code = 500

    def __init__(self, event_id: str, cause: BaseException):
        self.event_id = event_id
        self.cause = cause
        super().__init__(f"Processing failed for event {event_id}: {cause}", {"event_id": event_id})


class ToolExecutionError(HookchatError):
    """A tool execution handler failed."""

    def __init__(self, tool_name: str, cause: BaseException):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"Tool {tool_name} failed: {cause}", {"tool_name": tool_name})


class ModelProviderError(HookchatError):
    """The upstream model call failed."""

    status_code = 502
