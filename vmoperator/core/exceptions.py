# SPDX-License-Identifier: LGPL-3.0-or-later
# vmoperator/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


_SECRET_KEY_PARTS = (
    "pass",
    "password",
    "secret",
    "token",
    "apikey",
    "api_key",
    "cookie",
    "bearer",
    "private",
    "tls.key",
    "key_data",
)

REDACTED = "***REDACTED***"


def _is_secret_key(k: str) -> bool:
    ks = (k or "").lower()
    return any(p in ks for p in _SECRET_KEY_PARTS)


def _redact(ctx: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (REDACTED if _is_secret_key(str(k)) else v) for k, v in ctx.items()}


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    red = _redact(ctx)
    return ", ".join(f"{k}={red[k]!r}" for k in sorted(red.keys()))


@dataclass(eq=False)
class VmOperatorError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users and conditions see)
      - context that survives wrapping (operation, target object, step)
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        if self.context is None:
            self.context = {}
        super().__init__(self.msg)
        self.args = (self.msg,)

    def with_context(self, **ctx: Any) -> "VmOperatorError":
        assert self.context is not None
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        parts = [self.msg or self.__class__.__name__]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context))}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message(include_context=False, include_cause=False)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.msg,
            "context": _redact(self.context or {}),
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(VmOperatorError):
    """
    User-facing fatal error (exit code is honored by the CLI main()).
    """
    pass


class ValidationError(VmOperatorError):
    """
    Deterministic given the current desired state: reported, not retried
    until the desired state changes.
    """
    pass


class UnsupportedError(ValidationError):
    pass


class NotFoundError(VmOperatorError):
    """
    A control-plane object or an infrastructure entity does not exist.
    """
    pass


class ConflictError(VmOperatorError):
    pass


class VMwareError(VmOperatorError):
    """
    vSphere/vCenter operation failed.
    Use for pyvmomi / SDK / ESXi errors.
    """
    pass


class PlacementError(VMwareError):
    pass


class TaskFailedError(VMwareError):
    """
    A vSphere task ended in the error state. The message carries the
    remote localized message plus the originating operation and target.
    """
    pass


class TaskCancelledError(VMwareError):
    pass


class TaskTimeoutError(TaskCancelledError):
    pass


class MigrationStepError(VmOperatorError):
    """
    A migration pipeline step failed. context carries `step` and
    `last_completed_step` for manual or automated remediation.
    """
    pass


def wrap_fatal(msg: str, exc: Optional[BaseException] = None, code: int = 1, **context: Any) -> Fatal:
    return Fatal(code=code, msg=msg, cause=exc, context=context or None)


def wrap_vmware(msg: str, exc: Optional[BaseException] = None, code: int = 50, **context: Any) -> VMwareError:
    return VMwareError(code=code, msg=msg, cause=exc, context=context or None)


def is_not_found(e: BaseException) -> bool:
    if isinstance(e, NotFoundError):
        return True
    return getattr(e, "status", None) == 404


def is_retryable(e: BaseException) -> bool:
    """
    Validation failures recur until the desired state changes, so the
    scheduler does not requeue them with backoff.
    """
    if isinstance(e, ValidationError):
        return False
    if isinstance(e, MigrationStepError) and isinstance(e.cause, ValidationError):
        return False
    return True


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, VmOperatorError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
