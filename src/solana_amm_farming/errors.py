"""Error taxonomy shared by the builders, the codec and the analytics engine.

Every error carries a ``kind`` discriminant and a human readable ``detail`` so
callers can branch on the failure class without string matching.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Union


class FarmKitError(Exception):
    """Base class for every failure raised by this package."""

    kind = "error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.kind}: {self.detail}"


class ValidationError(FarmKitError, ValueError):
    """Missing, ambiguous or conflicting request parameters."""

    kind = "validation"


class PoolNotFound(ValidationError):
    kind = "pool_not_found"


class FarmNotFound(ValidationError):
    kind = "farm_not_found"


class InsufficientBalance(FarmKitError):
    """The owner does not hold enough of the token being spent."""

    kind = "insufficient_balance"

    def __init__(
        self,
        existing: Union[Decimal, int],
        required: Union[Decimal, int],
        *,
        mint: Optional[str] = None,
    ) -> None:
        self.existing = existing
        self.required = required
        self.mint = mint
        target = f" of {mint}" if mint else ""
        super().__init__(f"existing balance{target} {existing} < required {required}")


class DecodeError(FarmKitError, ValueError):
    """An account buffer does not match the layout it was decoded with."""

    kind = "decode"


class UnknownLayout(FarmKitError, LookupError):
    """The owning program is not mapped to any registered layout."""

    kind = "unknown_layout"

    def __init__(self, owner: str) -> None:
        self.owner = owner
        super().__init__(f"no account layout registered for owner program {owner}")


class YieldArithmeticError(FarmKitError, ArithmeticError):
    """Yield could not be computed because a denominator is zero."""

    kind = "arithmetic"


class RpcError(FarmKitError):
    """The RPC node rejected a request or could not be reached."""

    kind = "rpc"


class ConfirmationTimeout(FarmKitError, TimeoutError):
    """A submitted transaction was not confirmed within the allowed time."""

    kind = "timeout"

    def __init__(self, signature: str, timeout_seconds: float) -> None:
        self.signature = signature
        self.timeout_seconds = timeout_seconds
        super().__init__(f"transaction {signature} not confirmed within {timeout_seconds:g}s")


__all__ = [
    "ConfirmationTimeout",
    "DecodeError",
    "FarmKitError",
    "FarmNotFound",
    "InsufficientBalance",
    "PoolNotFound",
    "RpcError",
    "UnknownLayout",
    "ValidationError",
    "YieldArithmeticError",
]
