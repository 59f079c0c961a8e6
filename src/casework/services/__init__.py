"""
casework.services

Service-layer package.

Responsibilities:
- Own transaction boundaries, locking and retry decisions.
- Coordinate the membership store, the case store and the orchestrator gateway.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Services are plain Python classes built per request from a session, the settings,
# the shared lock registry and (for cases) a gateway; tests build them the same way.
