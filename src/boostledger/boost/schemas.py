"""Pydantic models returned by the ledger and query services."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

# --- Journal metadata ---


class BoostChangeMeta(BaseModel):
    """Structured context stored with a journal row. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    description: str | None = None


# --- increase / decrease ---


class BoostApplied(BaseModel):
    type: Literal["applied"] = "applied"
    change_id: uuid.UUID
    balance_after: int
    idempotency_key: bytes


class BoostNoop(BaseModel):
    type: Literal["noop"] = "noop"
    balance: int
    idempotency_key: bytes


BoostDiffResult = BoostApplied | BoostNoop


# --- boost_agent ---


class AgentBoostApplied(BaseModel):
    type: Literal["applied"] = "applied"
    change_id: uuid.UUID
    agent_boost_id: uuid.UUID
    balance_after: int
    agent_total: int
    idempotency_key: bytes


class AgentBoostNoop(BaseModel):
    type: Literal["noop"] = "noop"
    balance: int
    agent_total: int
    idempotency_key: bytes


BoostAgentResult = AgentBoostApplied | AgentBoostNoop


# --- Query projections ---


class BoostChangeRecord(BaseModel):
    id: uuid.UUID
    delta_amount: int
    meta: dict
    created_at: datetime


class DebitRecord(BaseModel):
    """One spend from the published journal. ``agent_id`` is None for plain decreases."""

    change_id: uuid.UUID
    user_id: uuid.UUID
    wallet: str | None
    delta_amount: int
    created_at: datetime
    agent_id: uuid.UUID | None


class AgentBoostRecord(BaseModel):
    user_id: uuid.UUID
    wallet: str | None
    agent_id: uuid.UUID
    amount: int
    created_at: datetime


class MergedBalance(BaseModel):
    competition_id: uuid.UUID
    balance_id: uuid.UUID
    balance: int
    moved_amount: int
