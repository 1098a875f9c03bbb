"""Loom error hierarchy.

All loom-specific errors inherit from LoomError for easy catching.
"""


class LoomError(Exception):
    """Base error for all loom operations."""


class ConfigError(LoomError):
    """Invalid or missing configuration."""


class ContentError(LoomError):
    """Error in the editing layer (unknown item, invalid field write)."""


class RepositoryError(LoomError):
    """The content repository could not be reached or rejected a request.

    Attributes:
        status: HTTP status code when the server answered, else None.

    """

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class WebhookError(LoomError):
    """An inbound webhook request was rejected."""


class SignatureError(WebhookError):
    """The webhook signature did not match the request body."""


class PayloadError(WebhookError):
    """The webhook body is not a valid change payload.

    Attributes:
        field: Name of the offending payload field, if one is to blame.

    """

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
