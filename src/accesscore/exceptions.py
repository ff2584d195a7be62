"""Unified exception hierarchy for accesscore.

All engine errors inherit from AccessCoreError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- HTTP status mapping for service layers
- Locale-aware user-facing messages
- ``reraise_as`` decorator that turns authority failures into operation failures

Usage:
    from accesscore.exceptions import (
        AccessCoreError,
        SaveFailure,
        localized_message,
    )

    try:
        await editor.save()
    except SaveFailure as e:
        toast(localized_message(e, lang))
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Optional, TypeVar, cast

__all__ = [
    # Base hierarchy
    "AccessCoreError",
    "ConfigurationError",
    "AuthorityError",
    "LoadFailure",
    "ExpandFailure",
    "SaveFailure",
    "SaveInProgressError",
    "ReconciliationFailure",
    "SessionNotLoadedError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # Helpers
    "get_http_status",
    "localized_message",
    "reraise_as",
]

logger = logging.getLogger(__name__)


# ---- Exception Hierarchy ----------------------------------------------------


class AccessCoreError(Exception):
    """Base exception for the permission engine.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "SAVE_FAILED").
        message: Human-readable error description (English, for logs).
        details: Additional context as keyword arguments.
        retryable: Whether repeating the same operation may succeed.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"
    retryable: bool = False

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(AccessCoreError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"
    message: str = "Invalid configuration"


class AuthorityError(AccessCoreError):
    """The remote authority rejected a request or could not be reached."""

    code: str = "AUTHORITY_ERROR"
    message: str = "Authorization service request failed"
    retryable: bool = True

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, code, status_code=status_code, **kwargs)
        self.status_code = status_code


class LoadFailure(AccessCoreError):
    """Tree or grant state fetch failed. Session keeps its prior state."""

    code: str = "LOAD_FAILED"
    message: str = "Failed to load permissions"
    retryable: bool = True


class ExpandFailure(AccessCoreError):
    """Branch fetch failed. Branch stays collapsed and unloaded."""

    code: str = "EXPAND_FAILED"
    message: str = "Failed to load scope values"
    retryable: bool = True


class SaveFailure(AccessCoreError):
    """Bulk save rejected or not delivered. Local edits stay dirty."""

    code: str = "SAVE_FAILED"
    message: str = "Failed to save permissions"
    retryable: bool = True


class SaveInProgressError(SaveFailure):
    """A write for this session is already in flight."""

    code: str = "SAVE_IN_PROGRESS"
    message: str = "A save is already in progress"


class ReconciliationFailure(AccessCoreError):
    """Write accepted but the authoritative re-read failed.

    Local state is neither confirmed nor rolled back; the session must be reloaded.
    """

    code: str = "RECONCILIATION_FAILED"
    message: str = "Saved, but the current permissions could not be re-read; reload required"
    retryable: bool = False


class SessionNotLoadedError(AccessCoreError):
    """Operation requires a loaded editing session."""

    code: str = "SESSION_NOT_LOADED"
    message: str = "No user and system selected"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[AccessCoreError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[AccessCoreError]] = {}

    def register(self, code: str, error_cls: type[AccessCoreError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[AccessCoreError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[AccessCoreError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("MY_CUSTOM_ERROR")
        class MyCustomError(AccessCoreError):
            code = "MY_CUSTOM_ERROR"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


# Register base errors
error_registry.register("INTERNAL_ERROR", AccessCoreError)
error_registry.register("CONFIGURATION_ERROR", ConfigurationError)
error_registry.register("AUTHORITY_ERROR", AuthorityError)
error_registry.register("LOAD_FAILED", LoadFailure)
error_registry.register("EXPAND_FAILED", ExpandFailure)
error_registry.register("SAVE_FAILED", SaveFailure)
error_registry.register("SAVE_IN_PROGRESS", SaveInProgressError)
error_registry.register("RECONCILIATION_FAILED", ReconciliationFailure)
error_registry.register("SESSION_NOT_LOADED", SessionNotLoadedError)


# ---- Protocol / presentation helpers ----------------------------------------

_HTTP_STATUS = {
    "CONFIGURATION_ERROR": 500,
    "AUTHORITY_ERROR": 502,
    "LOAD_FAILED": 502,
    "EXPAND_FAILED": 502,
    "SAVE_FAILED": 502,
    "SAVE_IN_PROGRESS": 409,
    "RECONCILIATION_FAILED": 409,
    "SESSION_NOT_LOADED": 400,
}


def get_http_status(error: AccessCoreError) -> int:
    """Map an AccessCoreError to the HTTP status a service layer should return."""
    if isinstance(error, AuthorityError) and error.status_code and 400 <= error.status_code < 500:
        return error.status_code
    return _HTTP_STATUS.get(error.code, 500)


MESSAGES: dict[str, dict[str, str]] = {
    "INTERNAL_ERROR": {
        "en": "Something went wrong",
        "ar": "حدث خطأ ما",
    },
    "CONFIGURATION_ERROR": {
        "en": "Permissions service is not configured",
        "ar": "خدمة الصلاحيات غير مهيأة",
    },
    "AUTHORITY_ERROR": {
        "en": "Authorization service is unavailable",
        "ar": "خدمة التفويض غير متاحة",
    },
    "LOAD_FAILED": {
        "en": "Failed to load permissions",
        "ar": "فشل تحميل الصلاحيات",
    },
    "EXPAND_FAILED": {
        "en": "Failed to load scope values",
        "ar": "فشل تحميل قيم النطاق",
    },
    "SAVE_FAILED": {
        "en": "Failed to save permissions",
        "ar": "فشل حفظ الصلاحيات",
    },
    "SAVE_IN_PROGRESS": {
        "en": "A save is already in progress",
        "ar": "عملية الحفظ قيد التنفيذ بالفعل",
    },
    "RECONCILIATION_FAILED": {
        "en": "Permissions were saved but could not be refreshed. Please reload",
        "ar": "تم حفظ الصلاحيات ولكن تعذر تحديثها. يرجى إعادة التحميل",
    },
    "SESSION_NOT_LOADED": {
        "en": "Select a user and a system first",
        "ar": "اختر مستخدمًا ونظامًا أولاً",
    },
}


def localized_message(error: AccessCoreError, lang: str = "en") -> str:
    """Human-readable message for ``error`` in ``lang`` (``"ar-EG"`` → ``"ar"``).

    Falls back to English, then to the error's own message.
    """
    base_lang = (lang or "en").split("-")[0].lower()
    table = MESSAGES.get(error.code)
    if table is None:
        return error.message
    return table.get(base_lang) or table.get("en") or error.message


_F = TypeVar("_F", bound=Callable[..., Any])


def reraise_as(error_cls: type[AccessCoreError], operation: str) -> Callable[[_F], _F]:
    """Decorator for async engine operations that reach the authority.

    Lets AccessCoreError subclasses other than AuthorityError propagate
    untouched; wraps authority and unexpected failures in ``error_cls``.

    Usage:
        @reraise_as(LoadFailure, "load states")
        async def load(self): ...
    """

    def decorator(method: _F) -> _F:
        @functools.wraps(method)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await method(*args, **kwargs)
            except AuthorityError as e:
                logger.error(
                    "%s failed: [%s] %s",
                    operation,
                    e.code,
                    e.message,
                    extra={"error_code": e.code, "error_details": e.details},
                )
                raise error_cls(f"{operation} failed: {e.message}", cause_code=e.code) from e
            except AccessCoreError:
                raise
            except Exception as e:
                logger.exception("%s unexpected error: %s", operation, e)
                raise error_cls(f"{operation} failed: {type(e).__name__}: {e}") from e

        return cast(_F, wrapper)

    return decorator
