"""Lookup of registered customers by phone number."""

from __future__ import annotations

import hashlib
from typing import Any, Protocol
from uuid import UUID

import httpx
from loguru import logger

from fidelio_api.services.loyalty.errors import IdentityResolverError


def hash_phone(phone: str) -> str:
    """Stable one-way customer key; raw phone numbers are never persisted."""

    return hashlib.sha256(phone.encode("utf-8")).hexdigest()


class IdentityResolver(Protocol):
    async def user_exists_by_phone(self, phone: str) -> tuple[UUID | None, bool]:
        ...


class UnregisteredIdentityResolver:
    """Resolver used in mock mode: nobody is registered, every purchase takes the shadow path."""

    async def user_exists_by_phone(self, phone: str) -> tuple[UUID | None, bool]:
        return None, False


class HttpIdentityResolver:
    """Query the identity provider's admin user listing for a phone number."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("identity provider base URL is required")
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._timeout = timeout_seconds
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
        }

    async def user_exists_by_phone(self, phone: str) -> tuple[UUID | None, bool]:
        client = self._http_client
        close_client = False
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout)
            close_client = True

        url = f"{self._base_url}/auth/v1/admin/users"
        try:
            response = await client.get(url, params={"phone": f"eq.{phone}"}, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Identity provider request failed", error=str(exc))
            raise IdentityResolverError(f"identity provider unreachable: {exc}") from exc
        finally:
            if close_client:
                await client.aclose()

        if response.status_code != httpx.codes.OK:
            logger.warning("Identity provider returned error status", status_code=response.status_code)
            raise IdentityResolverError(f"identity provider returned status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise IdentityResolverError("identity provider returned an undecodable body") from exc

        user = _matching_user(_extract_users(payload), phone)
        if user is None:
            return None, False

        raw_id = user.get("id")
        try:
            return UUID(str(raw_id)), True
        except ValueError as exc:
            raise IdentityResolverError(f"identity provider returned malformed user id: {raw_id!r}") from exc


def _extract_users(payload: Any) -> list[Any]:
    # The admin API answers either a bare list or {"users": [...]}.
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        users = payload.get("users")
        if isinstance(users, list):
            return users
        return []
    raise IdentityResolverError("identity provider returned an unexpected payload")


def _matching_user(users: list[Any], phone: str) -> dict[str, Any] | None:
    # The provider may ignore the phone filter; only an exact phone match counts.
    wanted = phone.lstrip("+")
    for user in users:
        if isinstance(user, dict) and str(user.get("phone") or "").lstrip("+") == wanted:
            return user
    if users:
        logger.debug("Identity provider listed no user with the queried phone", candidates=len(users))
    return None


__all__ = [
    "HttpIdentityResolver",
    "IdentityResolver",
    "UnregisteredIdentityResolver",
    "hash_phone",
]
