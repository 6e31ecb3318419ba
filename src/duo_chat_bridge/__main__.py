import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from duo_chat_bridge.app_config import load_json_config, parse_app_config, resolve_runtime_env
from duo_chat_bridge.bootstrap import bootstrap_runtime
from duo_chat_bridge.models import Completed, Rejected, SessionOutcome, TimedOut, TransportError


def _print_chunk(text: str) -> None:
    print(text, end="", flush=True)


def describe_outcome(outcome: SessionOutcome) -> str | None:
    """One-line notice for outcomes that are not a plain completed answer."""
    if isinstance(outcome, Completed):
        return None
    if isinstance(outcome, TimedOut):
        if outcome.phase == "confirmation":
            return "[no subscription confirmation from server; prompt not sent]"
        return "[answer stream went idle; output may be incomplete]"
    if isinstance(outcome, Rejected):
        return f"[subscription rejected: {outcome.reason}]"
    if isinstance(outcome, TransportError):
        return f"[connection error: {outcome.cause}]"
    return f"[unexpected outcome: {outcome!r}]"


async def main() -> None:
    load_dotenv()

    env = resolve_runtime_env()
    app = parse_app_config(load_json_config(), env)
    runtime = bootstrap_runtime(app, env)

    try:
        if not env.access_token:
            logger.error(f"{env.token_env_var} environment variable is required.")
            sys.exit(1)

        print(f"duo-chat-bridge ({app.gitlab_host}) - type 'exit' to quit")
        if runtime.log_descriptions:
            print(f"Logging: {', '.join(runtime.log_descriptions)}")
        print()

        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            print("duo> ", end="", flush=True)
            outcome = await runtime.new_session(on_chunk=_print_chunk).run(trimmed)
            print()
            notice = describe_outcome(outcome)
            if notice:
                print(notice)
            print()
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
