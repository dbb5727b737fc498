"""Two-phase (create, then assign) assignment workflow."""

from .orchestrator import AssignmentOrchestrator, AssignmentOutcome, AssignmentPhase

__all__ = ["AssignmentOrchestrator", "AssignmentOutcome", "AssignmentPhase"]
