"""
Error taxonomy for the submission pipeline.

Every stage raises a subclass of PipelineError; the HTTP layer renders it as
``{"success": false, "error": {"code", "message", "details"}}``.
"""
from typing import Any, Dict, Optional

__all__ = [
    "PipelineError",
    "InvalidRequest",
    "InvalidGameFile",
    "InvalidThumbnail",
    "InvalidLibrary",
    "InvalidAssetBundle",
    "Unauthorized",
    "NotFound",
    "RateLimited",
    "InternalError",
]


class PipelineError(Exception):
    """Root exception for every rejected or failed submission."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        sub_reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.sub_reason = sub_reason
        self.details = dict(details or {})
        if sub_reason:
            self.details.setdefault("reason", sub_reason)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, sub_reason={self.sub_reason!r})"


# -----------------
# Client-correctable (400)
# -----------------
class InvalidRequest(PipelineError):
    code = "INVALID_REQUEST"
    status_code = 400


class InvalidGameFile(PipelineError):
    code = "INVALID_GAME_FILE"
    status_code = 400


class InvalidThumbnail(PipelineError):
    code = "INVALID_THUMBNAIL"
    status_code = 400


class InvalidLibrary(PipelineError):
    code = "INVALID_LIBRARY"
    status_code = 400


class InvalidAssetBundle(PipelineError):
    code = "INVALID_ASSET_BUNDLE"
    status_code = 400


# -----------------
# Auth / lookup / quota
# -----------------
class Unauthorized(PipelineError):
    code = "UNAUTHORIZED"
    status_code = 401


class NotFound(PipelineError):
    code = "NOT_FOUND"
    status_code = 404


class RateLimited(PipelineError):
    code = "RATE_LIMITED"
    status_code = 429


# -----------------
# Internal (500)
# -----------------
class InternalError(PipelineError):
    code = "INTERNAL_ERROR"
    status_code = 500
