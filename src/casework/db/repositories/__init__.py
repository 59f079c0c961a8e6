"""
casework.db.repositories

Repository package.

Responsibilities:
- Group data-access repositories for the membership store and the case store.
"""

# Package marker; repositories are imported directly from submodules.


# --- Module Notes -----------------------------------------------------------
# Repositories are intentionally thin; invariant checks and commit decisions belong
# to the services.
