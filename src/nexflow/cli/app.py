"""Typer CLI entrypoints."""

from __future__ import annotations

import asyncio
import json
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console

from nexflow.app.container import App, build_app
from nexflow.channels.mock import MockWebConnector
from nexflow.config.settings import Settings, load_settings
from nexflow.errors import ConfigurationError
from nexflow.logging_utils import configure_logging

app = typer.Typer(name="nexflow", help="Multi-channel chat-bot message router", add_completion=False)

CHAT_USER_ID = "console"
REPLY_TIMEOUT_SECONDS = 120.0


def _load() -> Settings:
    try:
        return load_settings()
    except ConfigurationError as exc:
        logger.error("config.invalid error={}", exc)
        raise typer.BadParameter(str(exc)) from exc


@app.command()
def serve(
    json_logs: Annotated[bool, typer.Option("--json-logs", help="Emit structured JSON logs.")] = False,
) -> None:
    """Run the router with every enabled connector until interrupted."""

    configure_logging(profile="json" if json_logs else "default")
    settings = _load()
    try:
        application = build_app(settings)
    except ConfigurationError as exc:
        logger.error("app.config.invalid error={}", exc)
        raise typer.BadParameter(str(exc)) from exc
    if not application.connectors:
        logger.warning("serve.no_connectors enable one with NEXFLOW_TELEGRAM_ENABLED or NEXFLOW_WEB_ENABLED")
    try:
        asyncio.run(_serve(application))
    except KeyboardInterrupt:
        logger.info("serve.interrupted")
    except Exception:
        logger.exception("serve.crash")
        raise


async def _serve(application: App) -> None:
    await application.start()
    try:
        async with application.graceful_shutdown() as stop_event:
            await stop_event.wait()
    finally:
        await application.stop()


@app.command()
def chat(
    user_id: Annotated[str, typer.Option("--user-id", help="Transport-local user id for the session.")] = CHAT_USER_ID,
) -> None:
    """Chat with the configured provider from the terminal."""

    configure_logging(profile="console")
    settings = _load()
    application = build_app(settings, connectors=[])
    connector = MockWebConnector(application.users)
    application.router.register_connector(connector)
    asyncio.run(_chat(application, connector, user_id))


async def _chat(application: App, connector: MockWebConnector, user_id: str) -> None:
    console = Console()
    await application.start()
    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold cyan]you>[/bold cyan] ")
            except EOFError:
                break
            text = line.strip()
            if text in {"/quit", "/exit"}:
                break
            if not text:
                continue
            connector.clear_responses()
            await connector.send_test_message(user_id, user_id, text)
            reply = await _wait_for_reply(connector)
            if reply is None:
                console.print("[yellow]No reply received.[/yellow]")
            elif reply.is_error:
                console.print(f"[red]{reply.content}[/red]")
            else:
                console.print(f"[bold green]bot>[/bold green] {reply.content}")
    finally:
        await application.stop()


async def _wait_for_reply(connector: MockWebConnector, timeout: float = REPLY_TIMEOUT_SECONDS):  # noqa: ANN202
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        responses = connector.get_responses()
        if responses:
            return responses[-1][1]
        await asyncio.sleep(0.05)
    return None


@app.command("config")
def show_config() -> None:
    """Print the effective settings as JSON (secrets masked)."""

    settings = _load()
    data = settings.model_dump(mode="json")
    if data["telegram"].get("bot_token"):
        data["telegram"]["bot_token"] = "***"  # noqa: S105
    if data["llm"].get("api_key"):
        data["llm"]["api_key"] = "***"
    typer.echo(json.dumps(data, indent=2))


if __name__ == "__main__":
    app()
