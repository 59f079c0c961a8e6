"""
casework.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, and repositories for the
  membership store and the case store.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Services depend on repositories, never on raw sessions spread across modules,
# so switching DB backends stays local to this package.
