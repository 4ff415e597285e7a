"""Ledger error taxonomy.

Idempotency-key replays are never errors: they resolve to a ``noop`` result.
Everything here aborts the enclosing unit of work with no partial effect.
"""

from __future__ import annotations

from typing import Any


class BoostLedgerError(Exception):
    """Base class for all ledger errors."""


class InvalidAmount(BoostLedgerError, ValueError):  # noqa: N818
    """Raised synchronously, before any I/O, when an amount is not a positive integer."""

    def __init__(self, amount: Any) -> None:
        self.amount = amount
        super().__init__(f"amount must be a positive integer, got {amount!r}")


class NoSuchBalance(BoostLedgerError, LookupError):  # noqa: N818
    """Debit against a (user, competition) pair that never received Boost."""

    def __init__(self, user_id: Any, competition_id: Any) -> None:
        self.user_id = user_id
        self.competition_id = competition_id
        super().__init__(f"no boost balance for user {user_id} in competition {competition_id}")


class InsufficientBalance(BoostLedgerError):  # noqa: N818
    """Debit would drive the balance below zero."""

    def __init__(self, user_id: Any, competition_id: Any, balance: int, amount: int) -> None:
        self.user_id = user_id
        self.competition_id = competition_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"cannot debit {amount} from balance {balance} of user {user_id} in competition {competition_id}"
        )


class DuplicateAward(BoostLedgerError):  # noqa: N818
    """A stake was already converted for this competition. Used to unwind an award, never surfaced."""

    def __init__(self, stake_id: int, competition_id: Any) -> None:
        self.stake_id = stake_id
        self.competition_id = competition_id
        super().__init__(f"stake {stake_id} already awarded for competition {competition_id}")


class LedgerInvariantViolation(BoostLedgerError, RuntimeError):  # noqa: N818
    """Storage-level invariant tripped. This is a bug, not a business error."""


class MergeConflict(BoostLedgerError):  # noqa: N818
    """Merging balances would apply the same idempotency key twice to one balance."""


class CompetitionNotFound(BoostLedgerError, LookupError):  # noqa: N818
    """The competition referenced by an award flow does not exist."""

    def __init__(self, competition_id: Any) -> None:
        self.competition_id = competition_id
        super().__init__(f"competition {competition_id} not found")


class BoostWindowNotConfigured(BoostLedgerError):  # noqa: N818
    """The competition has no boost start/end dates."""

    def __init__(self, competition_id: Any) -> None:
        self.competition_id = competition_id
        super().__init__(f"competition {competition_id} has no boost window")


class OutsideBoostWindow(BoostLedgerError):  # noqa: N818
    """A spend was attempted while the competition's boost window is closed."""

    def __init__(self, competition_id: Any, now: Any) -> None:
        self.competition_id = competition_id
        self.now = now
        super().__init__(f"competition {competition_id} is not accepting boosts at {now}")


class UserNotFound(BoostLedgerError, LookupError):  # noqa: N818
    """No user matches the given id or wallet."""

    def __init__(self, ref: Any) -> None:
        self.ref = ref
        super().__init__(f"user {ref} not found")


class InvalidBoostBonus(BoostLedgerError, ValueError):  # noqa: N818
    """A bonus grant failed validation (amount cap, expiry or metadata)."""


class BoostBonusNotFound(BoostLedgerError, LookupError):  # noqa: N818
    def __init__(self, bonus_id: Any) -> None:
        self.bonus_id = bonus_id
        super().__init__(f"boost bonus {bonus_id} not found")


class BoostBonusAlreadyRevoked(BoostLedgerError):  # noqa: N818
    def __init__(self, bonus_id: Any) -> None:
        self.bonus_id = bonus_id
        super().__init__(f"boost bonus {bonus_id} is already revoked")
