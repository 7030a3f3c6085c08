"""Settlement backends for escrowed mission funds."""

from dispatch.payments.rail import FundsRail, InMemoryFundsRail

__all__ = ["FundsRail", "InMemoryFundsRail"]
