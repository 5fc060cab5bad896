"""Error taxonomy for the Unicorn Factory client."""

from __future__ import annotations

from typing import List, Optional


class UnicornError(Exception):
    """Base class for every error raised by this package."""


class InvalidInput(UnicornError, ValueError):
    """Caller input was rejected locally, before any network call."""


class InvalidAmount(InvalidInput):
    """Amount is negative, non-integral in base units, or overflows u64."""


class InvalidState(InvalidInput):
    """The record's lifecycle state does not allow the requested operation."""


class AccountExists(InvalidInput):
    """An account is already initialized at the target address."""


class AddressDerivationFailure(UnicornError):
    """No program address could be derived from the given seeds."""


class NotFound(UnicornError):
    """The fetched address has no backing account."""

    def __init__(self, address: object) -> None:
        super().__init__(f"Account not found: {address}")
        self.address = address


class MalformedAccount(UnicornError):
    """Account bytes do not match the expected layout, length, or address."""


class PriceMismatch(UnicornError):
    """Bonding-curve model and on-chain token price disagree."""


class SubmissionError(UnicornError):
    """A submitted transaction failed; ``kind`` classifies the failure."""

    kind = "submission"

    def __init__(
        self,
        diagnostic: str,
        *,
        signature: Optional[str] = None,
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(diagnostic)
        self.diagnostic = diagnostic
        self.signature = signature
        self.logs = list(logs or [])

    def __str__(self) -> str:
        return f"{self.kind}: {self.diagnostic}"


class RemoteRejected(SubmissionError):
    """The program or runtime refused the transaction."""

    kind = "rejected"


class Timeout(SubmissionError):
    """The transaction was not confirmed in time; it may still land."""

    kind = "timeout"


class TransportFailure(SubmissionError):
    """The RPC endpoint could not be reached or returned a transport error."""

    kind = "transport"
