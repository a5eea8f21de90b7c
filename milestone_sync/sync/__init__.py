# milestone-sync Cross-View Sync
"""Change broadcast, settle-window cascades and per-view state."""

from .bus import ChangeBus, for_milestone
from .scheduler import LivenessToken, ReconciliationScheduler
from .view import MilestoneView

__all__ = ["ChangeBus", "for_milestone", "LivenessToken", "ReconciliationScheduler", "MilestoneView"]
