"""Failure taxonomy for the share-link pipeline.

Steps inside ``course_planner.sharing`` raise these; the public share operations
catch them and hand back a ``Result`` so the web layer only ever inspects values.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class ShareError(Exception):
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(ShareError):
    kind = "auth"


class NotFoundError(ShareError):
    kind = "not_found"


class ExpiredError(ShareError):
    kind = "expired"


class PermissionDeniedError(ShareError):
    kind = "permission"


class InvalidRequestError(ShareError):
    kind = "invalid"


class StoreError(ShareError):
    kind = "store"


@dataclass
class Result:
    success: bool
    data: Any = None
    error: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "Result":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: ShareError) -> "Result":
        return cls(success=False, error=exc.message, kind=exc.kind)

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}
