from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from duo_chat_bridge.app_config import AppConfig, RuntimeEnv
from duo_chat_bridge.chat_session import ChatSession
from duo_chat_bridge.graphql_client import GraphQLClient
from duo_chat_bridge.logging_config import setup_logging
from duo_chat_bridge.websocket_transport import WebSocketTransport


@dataclass
class AppRuntime:
    app: AppConfig
    graphql: GraphQLClient
    transport: WebSocketTransport
    log_descriptions: list[str]

    def new_session(self, on_chunk: Callable[[str], None] | None = None) -> ChatSession:
        return ChatSession(
            identity_lookup=self.graphql.current_user_id,
            http_send=self.graphql.send,
            transport_connect=self.transport.connect,
            confirmation_timeout=self.app.confirmation_timeout_seconds,
            stream_timeout=self.app.stream_timeout_seconds,
            policy=self.app.termination_policy(),
            on_chunk=on_chunk,
            channel=self.app.channel,
            html_id=self.app.html_id,
        )

    async def close(self) -> None:
        await self.graphql.close()


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    graphql = GraphQLClient(app.graphql_url, env.access_token, timeout=app.http_timeout_seconds)
    transport = WebSocketTransport(
        app.cable_url,
        headers={"Authorization": f"Bearer {env.access_token}"},
        origin=app.origin,
        connect_attempts=app.connect_attempts,
    )
    return AppRuntime(
        app=app,
        graphql=graphql,
        transport=transport,
        log_descriptions=log_descriptions,
    )
