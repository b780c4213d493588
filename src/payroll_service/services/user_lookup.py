"""Employee validation against the user service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from payroll_service.errors import NotFoundError, UserLookupUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserSummary:
    """The parts of a user record this service relies on."""

    user_id: int
    org_id: int
    name: str | None = None
    status: str | None = None


@runtime_checkable
class UserLookup(Protocol):
    """Capability to confirm that a user belongs to an organization."""

    async def validate(self, user_id: int, org_id: int) -> UserSummary:
        """Return the user, or raise NotFoundError if it is not in the org."""
        ...


class HttpUserLookup:
    """UserLookup backed by the user service's REST API.

    Calls ``GET {base_url}/core/users/{id}`` with the ``X-Org-Id`` header.
    The user service answers ``{"data": {...}}``.
    """

    def __init__(self, client: httpx.AsyncClient, auth_token: str | None = None):
        self.client = client
        self.auth_token = auth_token

    async def validate(self, user_id: int, org_id: int) -> UserSummary:
        headers = {"X-Org-Id": str(org_id)}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        try:
            response = await self.client.get(f"/core/users/{user_id}", headers=headers)
        except httpx.HTTPError as e:
            logger.warning("User validation failed for user %s: %s", user_id, e)
            raise UserLookupUnavailableError(
                f"User service unreachable while validating user {user_id}"
            ) from e

        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(
                f"User {user_id} not found in organization {org_id}",
                {"user_id": user_id, "org_id": org_id},
            )
        if response.is_error:
            logger.warning(
                "User service returned %s for user %s", response.status_code, user_id
            )
            raise UserLookupUnavailableError(
                f"User service returned {response.status_code} for user {user_id}"
            )

        body: dict[str, Any] = response.json()
        data = body.get("data", body) or {}
        found_org = int(data.get("org_id", org_id))
        if found_org != org_id:
            raise NotFoundError(
                f"User {user_id} not found in organization {org_id}",
                {"user_id": user_id, "org_id": org_id},
            )

        return UserSummary(
            user_id=int(data.get("user_id", data.get("id", user_id))),
            org_id=found_org,
            name=data.get("name"),
            status=data.get("status"),
        )
