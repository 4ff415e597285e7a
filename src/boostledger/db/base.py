"""Declarative base and shared column types."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import Numeric
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class TokenAmount(TypeDecorator[int]):
    """NUMERIC(78, 0) exposed as a Python ``int``.

    78 digits hold any unsigned 256-bit value, so token amounts in wei never
    pass through float or 64-bit integers.
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int | Decimal):
            msg = f"TokenAmount expects int, got {type(value).__name__}"
            raise TypeError(msg)
        return Decimal(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> int | None:
        if value is None:
            return None
        return int(value)


class Base(DeclarativeBase):
    """Base class for all ledger models."""
