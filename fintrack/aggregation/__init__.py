"""Exactly-once folding of settled obligations into the ledger."""

from fintrack.aggregation.coordinator import AggregationCoordinator

__all__ = ["AggregationCoordinator"]
