"""
casework.orchestrator_gateway

Client boundary for the external business-process orchestrator.

Responsibilities:
- Typed process variables and the gateway protocol consumed by the lifecycle controller.
- The HTTP implementation of that protocol.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The lifecycle controller depends on `OrchestratorGateway` (the protocol), never on
# httpx directly, so tests can drive it with in-memory fakes.
