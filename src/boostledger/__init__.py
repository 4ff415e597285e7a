"""Boost ledger: per-competition balances, idempotent journal and agent aggregates."""

__version__ = "0.1.0"
