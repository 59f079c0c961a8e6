"""
casework.domain

Pure domain rules (no I/O).

Responsibilities:
- Membership snapshots, desired-set validation and per-step mutation planning.
- Case status transition rules.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Everything here is synchronous and deterministic so it can be unit tested without a
# database; the services thread storage calls around these functions.
