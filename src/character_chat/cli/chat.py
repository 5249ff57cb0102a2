"""
Chat, branch and character commands for the Character Chat CLI.
"""

from typing import Optional

import click

from ..core.protocols import MODEL_STATUS_UNSTABLE
from ..services.message_ledger import ExchangeResult
from .context import echo_json, run_async, run_sync


def _print_result(result: Optional[ExchangeResult], as_json: bool) -> None:
    if result is None:
        if as_json:
            echo_json({"noop": True})
        else:
            click.echo("Nothing to regenerate: no user message precedes it.")
        return

    if as_json:
        frame = result.done_frame()
        frame.update(
            {"content": result.content, "fallback": result.fallback, "model_status": result.model_status}
        )
        echo_json(frame)
        return

    click.echo(result.content)
    if result.model_status == MODEL_STATUS_UNSTABLE:
        click.echo(f"[model unstable] {result.error or 'provider error'}", err=True)
    elif result.assistant_message is not None:
        click.echo(
            f"[room {result.room_id} | message {result.assistant_message.message_id} | "
            f"seq {result.assistant_message.sequence_number} | "
            f"tokens {result.tokens_used} | cost {result.cost}]",
            err=True,
        )


@click.group()
def chat() -> None:
    """Send messages and manage conversation history."""
    pass


@chat.command()
@click.argument("message")
@click.option("--character", "-c", "character_id", help="Character for a new room")
@click.option("--room", "-r", "room_id", type=int, help="Existing room id")
@click.option("--model", "-m", help="Logical model id (defaults to llm.default_model)")
@click.option("--name", "user_name", help="Your display name in the prompt")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def send(
    ctx: click.Context,
    message: str,
    character_id: Optional[str],
    room_id: Optional[int],
    model: Optional[str],
    user_name: Optional[str],
    as_json: bool,
) -> None:
    """Send MESSAGE to a character (new room) or an existing room."""
    user_id = ctx.obj["user_id"]
    model = model or ctx.obj["config"].llm.default_model
    result = run_async(
        ctx,
        lambda services: services.ledger.send(
            user_id,
            message,
            model,
            room_id=room_id,
            character_id=character_id,
            user_name=user_name,
        ),
    )
    _print_result(result, as_json)


@chat.command()
@click.argument("message_id", type=int)
@click.option("--guidance", "-g", help="Out-of-character steering note")
@click.option("--model", "-m", help="Logical model id (defaults to llm.default_model)")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def regenerate(
    ctx: click.Context,
    message_id: int,
    guidance: Optional[str],
    model: Optional[str],
    as_json: bool,
) -> None:
    """Regenerate assistant message MESSAGE_ID."""
    user_id = ctx.obj["user_id"]
    model = model or ctx.obj["config"].llm.default_model
    result = run_async(
        ctx,
        lambda services: services.ledger.regenerate(user_id, message_id, model, guidance=guidance),
    )
    _print_result(result, as_json)


@chat.command()
@click.argument("message_id", type=int)
@click.pass_context
def rollback(ctx: click.Context, message_id: int) -> None:
    """Continue from MESSAGE_ID on a new branch."""
    user_id = ctx.obj["user_id"]
    branch_name = run_async(ctx, lambda services: services.ledger.rollback(user_id, message_id))
    click.echo(f"Now on branch {branch_name}")


@chat.command()
@click.argument("room_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Print messages as JSON")
@click.pass_context
def history(ctx: click.Context, room_id: int, as_json: bool) -> None:
    """Show the active branch of ROOM_ID."""
    user_id = ctx.obj["user_id"]
    messages = run_sync(ctx, lambda services: services.ledger.get_room_messages(user_id, room_id))
    if as_json:
        echo_json([m.to_dict() for m in messages])
        return
    for m in messages:
        click.echo(f"#{m.message_id} [{m.sequence_number}] {m.role}: {m.content}")


@chat.command()
@click.pass_context
def rooms(ctx: click.Context) -> None:
    """List your rooms."""
    user_id = ctx.obj["user_id"]
    room_list = run_sync(ctx, lambda services: services.ledger.list_rooms(user_id))
    if not room_list:
        click.echo("No rooms yet.")
        return
    for room in room_list:
        click.echo(
            f"{room.room_id}: {room.title or room.character_id} "
            f"({room.message_count} messages, branch {room.active_branch})"
        )


@click.group()
def branch() -> None:
    """Inspect and switch conversation branches."""
    pass


@branch.command("list")
@click.argument("room_id", type=int)
@click.pass_context
def list_branches(ctx: click.Context, room_id: int) -> None:
    """List branches of ROOM_ID."""
    user_id = ctx.obj["user_id"]
    branches = run_sync(ctx, lambda services: services.ledger.list_branches(user_id, room_id))
    for info in branches:
        marker = "*" if info.is_active else " "
        click.echo(f"{marker} {info.branch_name} ({info.message_count} messages)")


@branch.command()
@click.argument("room_id", type=int)
@click.argument("branch_name")
@click.pass_context
def switch(ctx: click.Context, room_id: int, branch_name: str) -> None:
    """Make BRANCH_NAME the visible conversation of ROOM_ID."""
    user_id = ctx.obj["user_id"]
    messages = run_async(
        ctx, lambda services: services.ledger.switch_branch(user_id, room_id, branch_name)
    )
    click.echo(f"Switched to {branch_name} ({len(messages)} messages)")


@branch.command()
@click.argument("room_id", type=int)
@click.argument("branch_name")
@click.pass_context
def delete(ctx: click.Context, room_id: int, branch_name: str) -> None:
    """Soft-delete BRANCH_NAME in ROOM_ID."""
    user_id = ctx.obj["user_id"]
    deleted = run_async(
        ctx, lambda services: services.ledger.delete_branch(user_id, room_id, branch_name)
    )
    click.echo(f"Deleted {deleted} messages from {branch_name}")


@click.group()
def character() -> None:
    """Character catalog commands."""
    pass


@character.command("list")
@click.pass_context
def list_characters(ctx: click.Context) -> None:
    """List available characters."""
    personas = run_sync(ctx, lambda services: services.catalog.list())
    for persona in personas:
        memory = "memory on" if persona.enable_memory else "memory off"
        model = persona.recommended_model or "-"
        click.echo(f"{persona.character_id}: {persona.name} [{model}, {memory}]")
