# milestone-sync - Milestone Status Reconciliation
"""milestone-sync: milestone status reconciliation for program dashboards.

Core Components:
- Status derivation: pure upcoming / completed / late rules
- Submission checker: TTL cache with in-flight request collapsing
- Change bus: injectable broadcast of submission changes between views
- Reconciliation scheduler: superseding settle-window re-check cascades
"""

__version__ = "0.1.0"
