"""Pydantic models for stake award and bonus grant flows."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from boostledger.errors import BoostWindowNotConfigured

if TYPE_CHECKING:
    from boostledger.db.models import Competition


class BoostWindow(BaseModel):
    """The period during which a competition accepts boosts."""

    competition_id: uuid.UUID
    start: datetime
    end: datetime

    @classmethod
    def from_competition(cls, competition: Competition) -> BoostWindow:
        if competition.boost_start_date is None or competition.boost_end_date is None:
            raise BoostWindowNotConfigured(competition.id)
        return cls(
            competition_id=competition.id,
            start=competition.boost_start_date,
            end=competition.boost_end_date,
        )

    def is_open(self, now: datetime) -> bool:
        return self.start <= now < self.end


class StakeAwardResult(BaseModel):
    """Outcome of converting one stake.

    ``skipped`` covers a stake that was already awarded, a wallet with no
    user, and a stake worth no Boost; ``reason`` tells them apart.
    """

    type: Literal["awarded", "skipped"]
    stake_id: int
    competition_id: uuid.UUID
    user_id: uuid.UUID | None = None
    amount: int = 0
    multiplier: Decimal | None = None
    balance_after: int | None = None
    reason: str | None = None


class StakeClaimResult(BaseModel):
    user_id: uuid.UUID
    competition_id: uuid.UUID
    awarded: int
    skipped: int
    balance: int


# --- Bonus grants ---


class BoostBonusRequest(BaseModel):
    wallet: str
    amount: int
    expires_at: datetime
    created_by_admin_id: uuid.UUID | None = None
    meta: dict[str, Any] | None = None


class BoostBonusGrant(BaseModel):
    bonus_id: uuid.UUID
    user_id: uuid.UUID
    amount: int
    expires_at: datetime
    applied_to_competitions: list[uuid.UUID] = Field(default_factory=list)


class BoostBonusRevocation(BaseModel):
    """``removed_from`` lists competitions whose window had not opened; ``kept_in`` the rest."""

    bonus_id: uuid.UUID
    revoked_at: datetime
    removed_from_competitions: list[uuid.UUID] = Field(default_factory=list)
    kept_in_competitions: list[uuid.UUID] = Field(default_factory=list)


class BonusChangeRecord(BaseModel):
    change_id: uuid.UUID
    competition_id: uuid.UUID
    delta_amount: int
    meta: dict
    created_at: datetime


class BonusCleanupResult(BaseModel):
    removed_bonus_ids: list[uuid.UUID] = Field(default_factory=list)
    kept_bonus_ids: list[uuid.UUID] = Field(default_factory=list)


class BonusApplySummary(BaseModel):
    applied: int = 0
    competitions_processed: int = 0
    competitions_skipped: int = 0
    failed: int = 0
