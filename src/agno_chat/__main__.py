import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from agno_chat.app_config import load_json_config, parse_app_config, resolve_runtime_env
from agno_chat.bootstrap import bootstrap_runtime
from agno_chat.shell import ChatShell


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()
    runtime = await bootstrap_runtime(app, env)
    controller = runtime.controller
    shell = ChatShell(controller, runtime.agents, user_name=app.user_name)

    print("agno-chat (type 'exit' to quit, '/help' for commands)")
    print(f"Server: {runtime.run_client.base_url}")
    agent = runtime.agents.get(controller.registry.active_agent_id)
    print(f"Agent: {agent.name} [{agent.id}]")
    session = controller.current_session()
    if session is not None:
        print(f"Session: {session.title} ({len(session.messages)} messages)")
    print(f"Storage: {app.storage_backend} ({app.storage_path})")
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

            try:
                await shell.handle(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
