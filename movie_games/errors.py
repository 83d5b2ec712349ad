"""Error taxonomy shared by the ingestion pipeline and the quota gate.

Every error carries a machine-readable `code` that the HTTP layer returns
verbatim, so clients can react (e.g. prompt for their own API key on
quota errors).
"""

from __future__ import annotations

from typing import Any


class MovieGamesError(Exception):
    code = "ERROR"
    status_code = 400

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "detail": self.message}
        if self.path is not None:
            body["path"] = self.path
        return body


# ---------------------------------------------------------------------------
# Ingestion: always fatal, the template is discarded
# ---------------------------------------------------------------------------

class IngestError(MovieGamesError):
    code = "INGEST_ERROR"


class MalformedInput(IngestError):
    """A known field arrived in a shape we do not recognise."""

    code = "MALFORMED_INPUT"


class DuplicateNodeId(IngestError):
    code = "DUPLICATE_NODE_ID"


class SensitiveContent(IngestError):
    code = "SENSITIVE_CONTENT"

    def __init__(self, hits: int) -> None:
        super().__init__(f"Content rejected: {hits} disallowed terms found")
        self.hits = hits

    def to_dict(self) -> dict[str, Any]:
        # never echo which terms matched
        return {"code": self.code, "detail": "Content rejected"}


class NoPlayableStart(IngestError):
    code = "NO_PLAYABLE_START"


class DanglingReference(IngestError):
    code = "DANGLING_REFERENCE"


class UnknownCharacter(IngestError):
    code = "UNKNOWN_CHARACTER"


# ---------------------------------------------------------------------------
# Quota and ownership
# ---------------------------------------------------------------------------

class GateError(MovieGamesError):
    code = "GATE_ERROR"
    status_code = 429


class RateLimited(GateError):
    code = "API_KEY_REQUIRED"


class DailyLimitExceeded(GateError):
    code = "API_KEY_REQUIRED_DAILY_LIMIT"


class ServiceBusy(GateError):
    code = "SERVICE_BUSY"


class Forbidden(GateError):
    code = "FORBIDDEN"
    status_code = 403


class NotFound(GateError):
    code = "NOT_FOUND"
    status_code = 404
