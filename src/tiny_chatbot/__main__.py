import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from tiny_chatbot.app_config import load_json_config, parse_app_config, resolve_runtime_env
from tiny_chatbot.bootstrap import AppRuntime, bootstrap_runtime
from tiny_chatbot.gateway import GatewayError, StreamDelta
from tiny_chatbot.messages import CreateSessionInput
from tiny_chatbot.retry import RetryExhaustedError
from tiny_chatbot.turn_engine import StreamCompleted


async def _print_health(runtime: AppRuntime) -> None:
    status = await runtime.gateway.health_check()
    if status.healthy:
        print(f"Model gateway: healthy ({status.latency_ms:.0f}ms)")
    else:
        print(f"Model gateway: unhealthy ({status.error})")


async def _answer(runtime: AppRuntime, session_id: str, text: str) -> None:
    print("assistant> ", end="", flush=True)
    streamed = False
    async for event in runtime.service.handle_user_message_streaming(session_id, text):
        if isinstance(event, StreamDelta):
            streamed = True
            print(event.delta, end="", flush=True)
        elif isinstance(event, StreamCompleted) and not streamed:
            # Round-limit replies arrive without deltas.
            print(event.message.content, end="")
    print("\n")


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)
    if not env.provider_api_key:
        print(f"{env.provider_env_var} environment variable is required.", file=sys.stderr)
        sys.exit(1)

    runtime = await bootstrap_runtime(app, env)
    session = runtime.store.create_session(CreateSessionInput(tenant_id=app.tenant_id))

    print("tiny-chatbot (type 'exit' to quit, '/health' to probe the model provider)")
    print(f"Provider: {app.provider_name} ({app.model})")
    print(f"Sandbox: {runtime.sandbox.config.working_dir_root}")
    print(f"Tools: {', '.join(t.name for t in runtime.tools)}")
    print(f"Session: {session.id} ({app.store_backend})")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
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
            if trimmed == "/health":
                await _print_health(runtime)
                continue

            try:
                await _answer(runtime, session.id, trimmed)
            except (GatewayError, RetryExhaustedError) as ex:
                logger.error(f"Model call failed: {ex}")
                print(f"\n[error] {ex}\n")
    finally:
        runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
