"""
Error taxonomy for the save relay.

Every failure a caller can see is a RelayError subclass. Each carries the HTTP
status the router answers with, a stable ``kind`` string, and a ``details``
dict with whatever is needed to diagnose the failure without retrying blindly
(upstream status and body for platform failures, the violated rule for
validation failures).
"""

from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base class for all relay failures."""

    status_code: int = 500
    kind: str = "relay_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigError(RelayError):
    """
    Required deployment configuration is missing.

    Raised before any network call. It is the same for every request until the
    deployment is fixed.
    """

    kind = "config_error"

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            "Missing SFMC configuration. Please set environment variables: "
            + ", ".join(self.missing),
            details={"missing": self.missing},
        )


class ValidationError(RelayError):
    """The save request is malformed or incomplete (client's fault)."""

    status_code = 400
    kind = "validation_error"

    def __init__(self, message: str, rule: str, **context: Any):
        self.rule = rule
        super().__init__(message, details={"rule": rule, **context})


class UpstreamError(RelayError):
    """A call to the marketing platform returned a non-success response."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message, details={"status": status, "body": body})


class AuthError(UpstreamError):
    """The client-credentials token exchange failed."""

    kind = "auth_error"


class UpsertError(UpstreamError):
    """The bulk row upsert failed."""

    kind = "upsert_error"
