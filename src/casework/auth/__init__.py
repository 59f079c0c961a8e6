"""
casework.auth

Token validation and service-token helpers.

Responsibilities:
- JWT helpers (validation of inbound bearer tokens, minting of service tokens).
- FastAPI dependency turning a bearer token into an explicit `Principal`.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# End-user login and token issuance live in the surrounding application, not here.
