"""
Rift Error Types

Two disjoint families of failures exist in Rift:

1. Build-time errors are raised as exceptions. They cover cell capacity and
   decoding problems on concrete data, schema range violations, and every
   lowering failure (unbounded symbolic loops, untraceable constructs, schema
   mismatches). None of them are retryable.

2. Execution-time outcomes (aborts with a developer exit code, VM faults,
   success) are values on ``ExecutionResult``. ``VMFault`` and ``VMAbort``
   below are only used inside the executor to unwind the stepper and are
   always converted before control returns to the caller.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from typing import Optional


class RiftError(Exception):
    """Base exception for Rift."""
    pass


# =============================================================================
# CELL ERRORS
# =============================================================================

class CellError(RiftError):
    """Cell construction or decoding failure."""
    pass


class CellOverflow(CellError):
    """A builder ran out of bit or reference capacity."""
    pass


class CellUnderflow(CellError):
    """A slice read past the end of its cell."""
    pass


class BocError(CellError):
    """Malformed bag-of-cells payload."""
    pass


# =============================================================================
# SCHEMA ERRORS
# =============================================================================

class FieldRangeError(RiftError):
    """A field value does not fit its declared type."""

    def __init__(self, field: str, message: str, value: object = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


# =============================================================================
# LOWERING ERRORS
# =============================================================================

class LoweringError(RiftError):
    """
    Fatal compile-time failure.

    Carries the contract and method being lowered plus the source location
    of the offending operation when it is known.
    """

    def __init__(
        self,
        message: str,
        contract: str = "",
        method: str = "",
        location: str = "",
    ):
        self.message = message
        self.contract = contract
        self.method = method
        self.location = location
        super().__init__(self._format())

    def _format(self) -> str:
        where = ".".join(p for p in (self.contract, self.method) if p)
        parts = []
        if where:
            parts.append(f"in {where}")
        if self.location:
            parts.append(f"at {self.location}")
        if parts:
            return f"{self.message} ({', '.join(parts)})"
        return self.message

    def with_context(self, contract: str = "", method: str = "") -> "LoweringError":
        """Fill in contract/method context without losing an existing one."""
        self.contract = self.contract or contract
        self.method = self.method or method
        self.args = (self._format(),)
        return self


class UnboundedLoopError(LoweringError):
    """A symbolic condition kept re-entering without a structural bound."""
    pass


class UntraceableError(LoweringError):
    """A host-language construct cannot be reduced to a traced operation."""
    pass


class SchemaMismatchError(LoweringError):
    """A symbolic value does not match the schema field it is stored into."""
    pass


class BuilderOverflowError(LoweringError, CellOverflow):
    """Static bit/ref accounting shows a traced builder can never fit its cell."""
    pass


# =============================================================================
# EXECUTION (internal to the VM)
# =============================================================================

class VMFault(RiftError):
    """Structural violation during execution (stack underflow, bad cell access...)."""

    def __init__(self, exit_code: int, message: str):
        self.exit_code = exit_code
        self.message = message
        super().__init__(f"fault {exit_code}: {message}")


class VMAbort(RiftError):
    """Explicit abort with a developer-chosen exit code."""

    def __init__(self, exit_code: int):
        self.exit_code = exit_code
        super().__init__(f"aborted with exit code {exit_code}")


class ExpectationFailed(AssertionError):
    """An ``expect_*`` helper did not match the execution result."""

    def __init__(self, message: str, result: Optional[object] = None):
        self.result = result
        super().__init__(message)
