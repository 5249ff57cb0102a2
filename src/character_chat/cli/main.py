"""
Main CLI entry point for Character Chat.

Provides a unified command-line interface with subcommands for serving the
API and for driving rooms, branches and memories directly.
"""

import functools
import logging
import os
from typing import Any, Optional

import click

from .. import __version__
from ..core.config import Config
from ..core.logging import configure_logging
from . import chat as chat_commands
from . import config as config_commands
from . import memory as memory_commands

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
@click.option("--config-file", type=click.Path(exists=True, dir_okay=False), help="runtime.yaml to load")
@click.option("--user", "user_id", envvar="CCH_USER_ID", default="local", show_default=True, help="Acting user id")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Optional[str],
    user_id: str,
    verbose: bool,
    debug: bool,
) -> None:
    """
    Character Chat CLI

    Persona-driven chat with branching conversations and long-term memory.
    """
    # Ensure that ctx.obj exists and is a dict
    ctx.ensure_object(dict)

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    else:
        level = "WARNING"
    configure_logging(level=level, json_format=False)

    if "config" not in ctx.obj:
        config = Config.from_file(config_file) if config_file else Config.from_env()
        if config_file:
            config.apply_env()
        ctx.obj["config"] = config
    ctx.obj.setdefault("config_file", config_file)
    ctx.obj["user_id"] = user_id
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--host", help="Bind address (defaults to api.host)")
@click.option("--port", type=int, help="Port (defaults to api.port)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int], reload: bool) -> None:
    """Run the chat API server."""
    import uvicorn

    from ..web.app import CONFIG_FILE_ENV, create_app

    config: Config = ctx.obj["config"]
    host = host or config.api.host
    port = port or config.api.port
    click.echo(f"Serving Character Chat API on http://{host}:{port}")

    if reload:
        # The reloader imports the app by name; the config file is passed by environment
        config_file = ctx.obj.get("config_file")
        if config_file:
            os.environ[CONFIG_FILE_ENV] = os.path.abspath(config_file)
        target: Any = "character_chat.web.app:app"
        factory = False
    else:
        target = functools.partial(create_app, config)
        factory = True

    uvicorn.run(
        target,
        factory=factory,
        host=host,
        port=port,
        reload=reload,
        log_level=config.api.log_level.lower(),
    )


cli.add_command(chat_commands.chat)
cli.add_command(chat_commands.branch)
cli.add_command(chat_commands.character)
cli.add_command(memory_commands.memory)
cli.add_command(config_commands.config)


if __name__ == "__main__":
    cli()
