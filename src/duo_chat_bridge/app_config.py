from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from duo_chat_bridge.cable_protocol import DEFAULT_CHANNEL, DEFAULT_HTML_ID
from duo_chat_bridge.content_extractor import TerminationPolicy


@dataclass
class RuntimeEnv:
    access_token: str
    token_env_var: str
    host_override: str | None


@dataclass
class AppConfig:
    gitlab_host: str
    channel: str
    html_id: str
    confirmation_timeout_seconds: float
    stream_timeout_seconds: float
    http_timeout_seconds: float
    connect_attempts: int
    terminate_on_empty_content: bool
    terminate_on_null_chunk_id: bool
    terminate_on_end_marker: bool
    log_level: str
    log_consumers: list | None

    @property
    def graphql_url(self) -> str:
        return f"https://{self.gitlab_host}/api/graphql"

    @property
    def cable_url(self) -> str:
        return f"wss://{self.gitlab_host}/-/cable"

    @property
    def origin(self) -> str:
        return f"https://{self.gitlab_host}"

    def termination_policy(self) -> TerminationPolicy:
        return TerminationPolicy(
            on_empty_content=self.terminate_on_empty_content,
            on_null_chunk_id_with_role=self.terminate_on_null_chunk_id,
            on_end_marker=self.terminate_on_end_marker,
        )


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict, env: RuntimeEnv | None = None) -> AppConfig:
    host = (env.host_override if env else None) or config.get("GitLabHost", "gitlab.com")
    return AppConfig(
        gitlab_host=str(host).strip().rstrip("/"),
        channel=config.get("Channel", DEFAULT_CHANNEL),
        html_id=config.get("HtmlId", DEFAULT_HTML_ID),
        confirmation_timeout_seconds=float(config.get("ConfirmationTimeoutSeconds", 10)),
        stream_timeout_seconds=float(config.get("StreamTimeoutSeconds", 30)),
        http_timeout_seconds=float(config.get("HttpTimeoutSeconds", 30)),
        connect_attempts=int(config.get("ConnectAttempts", 3)),
        terminate_on_empty_content=_to_bool(config.get("TerminateOnEmptyContent", True), default=True),
        terminate_on_null_chunk_id=_to_bool(config.get("TerminateOnNullChunkId", False), default=False),
        terminate_on_end_marker=_to_bool(config.get("TerminateOnEndMarker", True), default=True),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        access_token=os.environ.get("GITLAB_ACCESS_TOKEN", ""),
        token_env_var="GITLAB_ACCESS_TOKEN",
        host_override=os.environ.get("GITLAB_HOST") or None,
    )
