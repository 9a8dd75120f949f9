"""Stack Deployment Orchestrator (SDO).

Brings up a small stack of interdependent services (database, cache/broker,
workflow scheduler, admin UI) that demonstrates:
 - dependency-ordered plans with cycle detection
 - lazy secret/config injection
 - readiness gating with bounded polling
 - idempotent re-application with rolling updates

Run it with the ``deploy`` console script (see ``sdo.cli``).
"""

__version__ = "0.1.0"
