"""Read-only projections."""

from fintrack.queries.projector import BalanceProjector

__all__ = ["BalanceProjector"]
