"""
casework.orchestrator_gateway.client

HTTP client boundary used by the case lifecycle controller.

Responsibilities:
- Encode process variables as explicit value/type pairs (the orchestrator is schema-strict).
- Attach short-lived service JWT credentials.
- Turn every transport error, timeout and non-2xx answer into `RemoteCollaboratorFailure`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Literal, Protocol

import httpx

from casework.auth.jwt import JwtConfig, issue_token
from casework.errors import RemoteCollaboratorFailure, ValidationError
from casework.observability.logging import get_logger
from casework.settings import Settings

log = get_logger(__name__)

ValueType = Literal["Boolean", "String"]


@dataclass(frozen=True, slots=True)
class TypedValue:
    value: bool | str
    type: ValueType

    def __post_init__(self) -> None:
        expected = bool if self.type == "Boolean" else str
        if not isinstance(self.value, expected):
            raise ValidationError(
                f"{self.type} variable holds {type(self.value).__name__}",
                type=self.type,
            )

    @classmethod
    def boolean(cls, value: bool) -> TypedValue:
        return cls(value=value, type="Boolean")

    @classmethod
    def string(cls, value: str) -> TypedValue:
        return cls(value=value, type="String")

    def as_payload(self) -> dict[str, Any]:
        return {"value": self.value, "type": self.type}


Variables = Mapping[str, TypedValue]


@dataclass(frozen=True, slots=True)
class ProcessStarted:
    instance_id: str


class OrchestratorGateway(Protocol):
    async def start_process(self, process_key: str, variables: Variables) -> ProcessStarted: ...

    async def complete_task(self, instance_id: str, variables: Variables) -> None: ...


def encode_variables(variables: Variables) -> dict[str, dict[str, Any]]:
    encoded: dict[str, dict[str, Any]] = {}
    for name, v in variables.items():
        if not isinstance(v, TypedValue):
            raise ValidationError("untyped process variable", variable=name)
        encoded[name] = v.as_payload()
    return encoded


@dataclass(frozen=True, slots=True)
class GatewayAuth:
    # Identity presented to the orchestrator; subject is a service identity.
    subject: str = "casework-engine"
    roles: tuple[str, ...] = ("case_engine",)


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.orchestrator_base_url,
        timeout=settings.orchestrator_timeout_seconds,
    )


class HttpOrchestratorGateway:
    def __init__(
        self,
        *,
        settings: Settings,
        http: httpx.AsyncClient,
        auth: GatewayAuth | None = None,
    ) -> None:
        self._settings = settings
        self._http = http
        self._auth = auth or GatewayAuth()

    def _authz(self) -> dict[str, str]:
        token = issue_token(
            cfg=JwtConfig.from_settings(self._settings),
            subject=self._auth.subject,
            roles=list(self._auth.roles),
            ttl=timedelta(minutes=5),
        )
        return {"Authorization": f"Bearer {token}"}

    async def start_process(self, process_key: str, variables: Variables) -> ProcessStarted:
        body = await self._post(
            "start_process",
            "/api/procesos/iniciar",
            {"processKey": process_key, "variables": encode_variables(variables)},
        )
        instance_id = body.get("instanceId") if isinstance(body, dict) else None
        if not instance_id:
            raise RemoteCollaboratorFailure(
                operation="start_process", detail="response carries no instanceId", body=body
            )
        return ProcessStarted(instance_id=str(instance_id))

    async def complete_task(self, instance_id: str, variables: Variables) -> None:
        await self._post(
            "complete_task",
            f"/api/procesos/{instance_id}/completar-tarea",
            {"variables": encode_variables(variables)},
        )

    async def _post(self, operation: str, path: str, payload: dict[str, Any]) -> Any:
        try:
            r = await self._http.post(
                path,
                json=payload,
                headers=self._authz(),
                timeout=self._settings.orchestrator_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise RemoteCollaboratorFailure(operation=operation, detail="timeout") from e
        except httpx.HTTPError as e:
            raise RemoteCollaboratorFailure(
                operation=operation, detail=str(e) or type(e).__name__
            ) from e

        body = _json_or_text(r)
        if r.is_error:
            log.warning(
                "orchestrator_rejected",
                operation=operation,
                status_code=r.status_code,
            )
            raise RemoteCollaboratorFailure(
                operation=operation,
                detail=f"HTTP {r.status_code}",
                status_code=r.status_code,
                body=body,
            )
        return body


def _json_or_text(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text


# --- Module Notes -----------------------------------------------------------
# The endpoint paths mirror the orchestrator service fronting the BPMN engine; the
# bearer token is service-to-service only and never tied to an end user.
