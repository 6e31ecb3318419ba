import asyncio
import os
import unittest
from unittest.mock import patch

from loguru import logger

from duo_chat_bridge.app_config import RuntimeEnv, parse_app_config, resolve_runtime_env
from duo_chat_bridge.bootstrap import bootstrap_runtime
from duo_chat_bridge.content_extractor import TerminationPolicy


class AppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})

        self.assertEqual("gitlab.com", app.gitlab_host)
        self.assertEqual("https://gitlab.com/api/graphql", app.graphql_url)
        self.assertEqual("wss://gitlab.com/-/cable", app.cable_url)
        self.assertEqual("https://gitlab.com", app.origin)
        self.assertEqual("AiCompletionChannel", app.channel)
        self.assertEqual(10.0, app.confirmation_timeout_seconds)
        self.assertEqual(30.0, app.stream_timeout_seconds)
        self.assertEqual(TerminationPolicy(), app.termination_policy())
        self.assertIsNone(app.log_consumers)

    def test_overrides(self) -> None:
        app = parse_app_config(
            {
                "GitLabHost": "gitlab.example/",
                "ConfirmationTimeoutSeconds": "2.5",
                "TerminateOnEmptyContent": "off",
                "TerminateOnNullChunkId": "yes",
                "TerminateOnEndMarker": False,
                "LogLevel": "DEBUG",
            }
        )

        self.assertEqual("gitlab.example", app.gitlab_host)
        self.assertEqual(2.5, app.confirmation_timeout_seconds)
        self.assertEqual(
            TerminationPolicy(on_empty_content=False, on_null_chunk_id_with_role=True, on_end_marker=False),
            app.termination_policy(),
        )
        self.assertEqual("DEBUG", app.log_level)

    def test_env_host_wins_over_file(self) -> None:
        env = RuntimeEnv(access_token="t", token_env_var="GITLAB_ACCESS_TOKEN", host_override="self.managed")

        self.assertEqual("self.managed", parse_app_config({"GitLabHost": "gitlab.com"}, env).gitlab_host)

    @patch.dict(os.environ, {"GITLAB_ACCESS_TOKEN": "glpat-x", "GITLAB_HOST": ""}, clear=False)
    def test_resolve_runtime_env(self) -> None:
        env = resolve_runtime_env()

        self.assertEqual("glpat-x", env.access_token)
        self.assertIsNone(env.host_override)


class BootstrapTests(unittest.TestCase):
    def tearDown(self) -> None:
        logger.remove()

    def test_clients_use_configured_endpoints(self) -> None:
        app = parse_app_config({"GitLabHost": "gitlab.example", "LogConsumers": []})
        env = RuntimeEnv(access_token="t", token_env_var="GITLAB_ACCESS_TOKEN", host_override=None)

        runtime = bootstrap_runtime(app, env)
        try:
            self.assertEqual("https://gitlab.example/api/graphql", runtime.graphql.url)
            self.assertEqual([], runtime.log_descriptions)
        finally:
            asyncio.run(runtime.close())


if __name__ == "__main__":
    unittest.main()
