"""Daily planning workflow: stages, lifecycle and orchestration."""

from .collaborators import InventorySource, JobStore, PrioritizationSource
from .orchestrator import PlanningOrchestrator
from .stages import DispatchStage, InventoryStage, PlanningStage, RouteStage

__all__ = [
    "PlanningOrchestrator",
    "PlanningStage",
    "DispatchStage",
    "RouteStage",
    "InventoryStage",
    "JobStore",
    "PrioritizationSource",
    "InventorySource",
]
