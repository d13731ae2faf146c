"""Route group exports."""

from . import health, plans, routing

__all__ = ["health", "plans", "routing"]
