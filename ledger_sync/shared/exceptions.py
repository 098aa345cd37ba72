# ledger_sync/shared/exceptions.py
from http import HTTPStatus
from typing import Any, Optional


class LedgerSyncError(Exception):
    """Base class for sync core failures.

    Carries an HTTP-style ``status_code`` and ``detail`` so an HTTP
    layer can translate it without knowing every subclass.
    """

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


# Authentication & credential exceptions
class AuthMissing(LedgerSyncError):
    status_code = HTTPStatus.UNAUTHORIZED

    def __init__(self, platform: str) -> None:
        super().__init__(f"No {platform} credential found; authorization required")
        self.platform = platform


class AuthExpired(LedgerSyncError):
    status_code = HTTPStatus.UNAUTHORIZED

    def __init__(self, platform: str, reason: str = "Token refresh failed") -> None:
        super().__init__(f"{platform} session expired, re-authorization required: {reason}")
        self.platform = platform
        self.reason = reason


class AuthExchangeFailed(LedgerSyncError):
    status_code = HTTPStatus.BAD_REQUEST

    def __init__(self, platform: str, reason: str) -> None:
        super().__init__(f"{platform} authorization code exchange failed: {reason}")
        self.platform = platform
        self.reason = reason


# Remote platform exceptions
class RemoteApiError(LedgerSyncError):
    status_code = HTTPStatus.BAD_GATEWAY

    def __init__(self, status: Optional[int], body: str) -> None:
        label = status if status is not None else "no response"
        super().__init__(f"Remote API request failed ({label}): {body}")
        self.status = status
        self.body = body


class SyncConflict(LedgerSyncError):
    status_code = HTTPStatus.CONFLICT

    def __init__(self, expected_token: Optional[str], actual_token: Optional[str]) -> None:
        super().__init__(
            f"Sync token mismatch: expected {expected_token!r}, got {actual_token!r}"
        )
        self.expected_token = expected_token
        self.actual_token = actual_token


# Data exceptions
class MappingError(LedgerSyncError):
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY

    def __init__(self, field: str, raw_value: Any) -> None:
        super().__init__(f"Cannot map field {field!r} from value {raw_value!r}")
        self.field = field
        self.raw_value = raw_value


class PersistenceError(LedgerSyncError):
    def __init__(self, message: str = "Local store write failed") -> None:
        super().__init__(message)


class RecordNotFound(LedgerSyncError):
    status_code = HTTPStatus.NOT_FOUND

    def __init__(self, kind: str, remote_id: str) -> None:
        super().__init__(f"{kind} {remote_id!r} not found in local store")
        self.kind = kind
        self.remote_id = remote_id
