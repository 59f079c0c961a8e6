"""
casework.api

Thin HTTP surface over the services.

Responsibilities:
- FastAPI app factory, routers and request/response models.
- Mapping of domain errors to HTTP responses.
"""

# Package marker.
