"""
Memory CLI commands.

Inspect the facts and summaries remembered for a room.
"""

import click

from .context import echo_json, run_async, run_sync


@click.group()
def memory() -> None:
    """Room memory commands."""
    pass


@memory.command()
@click.argument("room_id", type=int)
@click.argument("query")
@click.option(
    "--format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.pass_context
def search(ctx: click.Context, room_id: int, query: str, format: str) -> None:
    """Semantic search over ROOM_ID's memories."""
    user_id = ctx.obj["user_id"]
    results = run_async(
        ctx, lambda services: services.ledger.search_room_memories(user_id, room_id, query)
    )
    if format == "json":
        echo_json([r.to_dict() for r in results])
        return
    if not results:
        click.echo("No matching memories.")
        return
    for r in results:
        click.echo(f"{r.similarity:.3f}  [{r.memory_type}, importance {r.importance}] {r.content}")


@memory.command("list")
@click.argument("room_id", type=int)
@click.option(
    "--format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.pass_context
def list_memories(ctx: click.Context, room_id: int, format: str) -> None:
    """List ROOM_ID's memories, newest first."""
    user_id = ctx.obj["user_id"]
    memories = run_sync(ctx, lambda services: services.ledger.list_room_memories(user_id, room_id))
    if format == "json":
        echo_json(
            [
                {
                    "memory_id": m.memory_id,
                    "content": m.content,
                    "importance": m.importance,
                    "memory_type": m.memory_type,
                    "message_range_start": m.message_range_start,
                    "message_range_end": m.message_range_end,
                    "created_at": m.created_at,
                }
                for m in memories
            ]
        )
        return

    click.echo(f"Room {room_id}: {len(memories)} memories")
    for m in memories:
        click.echo(f"#{m.memory_id} [{m.memory_type}, importance {m.importance}] {m.content}")
