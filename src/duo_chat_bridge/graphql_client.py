from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from duo_chat_bridge.errors import IdentityResolutionError

_CURRENT_USER_QUERY = "query { currentUser { id } }"


@dataclass(frozen=True)
class GraphQLResponse:
    status: int
    body: str

    def json(self) -> Any:
        return json.loads(self.body)

    def errors(self) -> list[Any]:
        """GraphQL- and mutation-level errors carried in the body."""
        if self.status >= 400:
            return [f"HTTP {self.status}"]
        try:
            data = self.json()
        except (ValueError, RecursionError):
            return [f"unparseable response body: {self.body[:200]}"]
        if not isinstance(data, dict):
            return [f"unexpected response body: {self.body[:200]}"]
        top_level = data.get("errors") or []
        found = list(top_level) if isinstance(top_level, list) else [top_level]
        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            found.append(f"unexpected data field: {payload!r:.200}")
            return found
        action = payload.get("aiAction") or {}
        if not isinstance(action, dict):
            found.append(f"unexpected aiAction field: {action!r:.200}")
            return found
        found.extend(action.get("errors") or [])
        return found


def _literal(value: str) -> str:
    # A JSON string literal is a valid GraphQL string literal.
    return json.dumps(value)


def build_chat_mutation(resource_id: str, prompt: str, session_id: str) -> dict[str, str]:
    query = (
        "mutation { aiAction(input: { chat: { "
        f"resourceId: {_literal(resource_id)}, content: {_literal(prompt)} }}, "
        f"clientSubscriptionId: {_literal(session_id)} }}) {{ errors }} }}"
    )
    return {"query": query}


class GraphQLClient:
    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self._client = client or httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    async def send(self, body: dict[str, Any]) -> GraphQLResponse:
        logger.debug(f"POST {self.url}")
        response = await self._client.post(self.url, json=body)
        logger.debug(f"GraphQL response: HTTP {response.status_code}")
        return GraphQLResponse(status=response.status_code, body=response.text)

    async def current_user_id(self) -> str:
        try:
            response = await self.send({"query": _CURRENT_USER_QUERY})
        except httpx.HTTPError as ex:
            raise IdentityResolutionError(f"Identity lookup failed: {ex}") from ex

        errors = response.errors()
        if errors:
            raise IdentityResolutionError(f"Identity lookup failed: {errors}")
        user = (response.json().get("data") or {}).get("currentUser") or {}
        if not isinstance(user, dict):
            raise IdentityResolutionError(f"Identity lookup returned an unexpected user: {user!r:.200}")
        user_id = str(user.get("id") or "").strip()
        if not user_id:
            raise IdentityResolutionError("Identity lookup returned no current user")
        return user_id

    async def close(self) -> None:
        await self._client.aclose()
