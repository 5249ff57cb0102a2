"""
Shared plumbing for CLI commands: service construction and async execution.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

import click

from ..core.exceptions import CharacterChatError
from ..services.container import ChatServices, build_services

T = TypeVar("T")


def get_services(ctx: click.Context) -> ChatServices:
    """Services injected through `ctx.obj`, or built from the loaded config."""
    obj = ctx.ensure_object(dict)
    if "services" not in obj:
        obj["services"] = build_services(obj["config"])
        obj["owns_services"] = True
    return obj["services"]  # type: ignore


def run_async(ctx: click.Context, operation: Callable[[ChatServices], Awaitable[T]]) -> T:
    """Run one operation to completion, including its detached memory work."""
    services = get_services(ctx)
    owns_services = bool(ctx.obj.get("owns_services"))

    async def runner() -> T:
        try:
            return await operation(services)
        finally:
            await services.ledger.drain_background_tasks()
            if owns_services:
                await services.router.close()

    try:
        return asyncio.run(runner())
    except CharacterChatError as e:
        raise click.ClickException(f"{e.error_code}: {e.message}") from e


def run_sync(ctx: click.Context, operation: Callable[[ChatServices], T]) -> T:
    """Run a synchronous service call, mapping domain errors to CLI errors."""
    try:
        return operation(get_services(ctx))
    except CharacterChatError as e:
        raise click.ClickException(f"{e.error_code}: {e.message}") from e


def echo_json(data: Any) -> None:
    import json

    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))
