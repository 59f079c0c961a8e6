"""
casework.auth.models

Authenticated caller identity passed explicitly into service calls.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    subject: str
    roles: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return "administrator" in self.roles

    @property
    def user_id(self) -> uuid.UUID | None:
        # End users carry their user id as `sub`; service identities do not.
        try:
            return uuid.UUID(self.subject)
        except ValueError:
            return None
