"""Shared exception hierarchy for mission services.

Every rejection carries a ``context`` dict with the values a caller needs to
retry correctly (seconds remaining, expected vs. sent amount, ...).
"""

from db.enums import LimitBreach, MissionStatus


class MissionError(Exception):
    """Base exception for rejected mission operations."""

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message: str = message
        self.context: dict[str, object] = context


# ── Timing ────────────────────────────────────────────────────────────────────


class TimingError(MissionError):
    """Operation attempted outside the window that allows it."""


class EnrollmentClosedError(TimingError):
    """Enrollment is not open (not started, already closed, or wrong passphrase)."""


class CooldownActiveError(TimingError):
    """A round was claimed recently and the mission is paused."""

    def __init__(self, seconds_remaining: int) -> None:
        super().__init__(
            f"Mission is paused, next round in {seconds_remaining}s",
            seconds_remaining=seconds_remaining,
        )
        self.seconds_remaining: int = seconds_remaining


class MissionNotActiveError(TimingError):
    """Round claimed while the mission is not Active."""

    def __init__(self, status: MissionStatus) -> None:
        super().__init__(f"Mission is not active (status={status.value})", status=status.value)
        self.status: MissionStatus = status


# ── Capacity ──────────────────────────────────────────────────────────────────


class CapacityError(MissionError):
    """Mission or player has no room for the attempted action."""


class MissionFullError(CapacityError):
    """Maximum number of players reached."""


class AlreadyEnrolledError(CapacityError):
    """Player already holds a record in this mission."""


class NotEnrolledError(CapacityError):
    """Player is not part of this mission."""


class AlreadyWonError(CapacityError):
    """Player already claimed a round in this mission."""


class AllRoundsClaimedError(CapacityError):
    """Every round of the mission has been paid out."""


# ── Payment ───────────────────────────────────────────────────────────────────


class PaymentError(MissionError):
    """Paid amount does not match what the mission requires."""


class WrongEnrollmentAmountError(PaymentError):
    def __init__(self, expected: int, sent: int) -> None:
        super().__init__(
            f"Enrollment fee is {expected}, received {sent}",
            expected=str(expected),
            sent=str(sent),
        )
        self.expected: int = expected
        self.sent: int = sent


class InsufficientFundsError(PaymentError):
    """Requested amount exceeds the available balance."""


# ── Authorization ─────────────────────────────────────────────────────────────


class AuthorizationError(MissionError):
    """Caller is not allowed to perform the operation."""


class NotAuthorizedError(AuthorizationError):
    """Caller is neither the owner nor an authorized address."""


class NotAMissionError(AuthorizationError):
    """Caller is not a mission known to the registry."""


class ContractCallerError(AuthorizationError):
    """Contract addresses may not enroll."""


# ── Rate limits ───────────────────────────────────────────────────────────────


class RateLimitError(MissionError):
    """User exhausted an enrollment window."""

    def __init__(self, breach: LimitBreach, seconds_until_retry: int) -> None:
        super().__init__(
            f"{breach.value.capitalize()} enrollment limit reached, retry in {seconds_until_retry}s",
            breach=breach.value,
            seconds_until_retry=seconds_until_retry,
        )
        self.breach: LimitBreach = breach
        self.seconds_until_retry: int = seconds_until_retry


# ── Transfers ─────────────────────────────────────────────────────────────────


class TransferFailedError(MissionError):
    """A value transfer the operation depends on did not go through."""

    def __init__(self, recipient: str, amount: int) -> None:
        super().__init__(
            f"Transfer of {amount} to {recipient} failed",
            recipient=recipient,
            amount=str(amount),
        )
        self.recipient: str = recipient
        self.amount: int = amount


# ── State ─────────────────────────────────────────────────────────────────────


class InvalidMissionParamsError(MissionError):
    """Mission parameters violate a structural constraint."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid {field}: {reason}", field=field, reason=reason)
        self.field: str = field


class MissionNotFoundError(MissionError):
    """No mission with the requested id."""


class InvalidStateError(MissionError):
    """Operation is not allowed in the mission's current status."""

    def __init__(self, operation: str, status: MissionStatus) -> None:
        super().__init__(
            f"Cannot {operation} while mission is {status.value}",
            operation=operation,
            status=status.value,
        )
        self.status: MissionStatus = status


class OwnershipProposalError(MissionError):
    """Ownership proposal missing, expired, or confirmed by its proposer."""


class ReentrantCallError(MissionError):
    """A state-mutating call re-entered a mission that is mid-operation."""


class PayoutInvariantError(MissionError):
    """Internal invariant violated by the payout curve. Not a caller error."""
