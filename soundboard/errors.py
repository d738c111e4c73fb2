"""Error types shared by the upload pipeline and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass

# Upload / sound management codes
NAME_TOO_SHORT = "NAME_TOO_SHORT"
NAME_TOO_LONG = "NAME_TOO_LONG"
QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
FILE_TOO_LARGE = "FILE_TOO_LARGE"
INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
INVALID_AUDIO_FORMAT = "INVALID_AUDIO_FORMAT"
INVALID_AUDIO = "INVALID_AUDIO"
DURATION_TOO_LONG = "DURATION_TOO_LONG"
NOT_FOUND = "NOT_FOUND"
INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class UploadError:
    """A rejected sound operation: stable ``code`` plus a human ``message``."""

    code: str
    message: str

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ApiError(Exception):
    """Raised by routes and dependencies; rendered as ``{"error": {code, message}}``."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.headers = headers or {}

    @classmethod
    def from_upload_error(cls, error: UploadError, status_code: int) -> ApiError:
        return cls(status_code, error.code, error.message)
