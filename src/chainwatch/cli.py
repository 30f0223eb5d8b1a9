"""CLI entry point for the chainwatch daemon."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from chainwatch.chain.link import ChainLink
from chainwatch.config import load_config
from chainwatch.daemon import run_daemon
from chainwatch.engine.manager import new_subscription
from chainwatch.errors import ChainwatchError, InvalidSubscription, NotFound
from chainwatch.models.records import EventRecord
from chainwatch.models.snapshots import EventSnapshot
from chainwatch.storage.sqlite import SQLiteEventStore, SQLiteSubscriptionRegistry


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """chainwatch - contract event watcher for EVM chains."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load(ctx: click.Context):
    cfg = load_config(ctx.obj["config_path"])
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())
    return cfg


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.option("--print-events", is_flag=True, help="Echo each new event as a JSON line")
@click.pass_context
def run(ctx: click.Context, print_events: bool) -> None:
    """Start the watcher daemon."""
    cfg = _load(ctx)

    def _echo(event: EventRecord) -> None:
        click.echo(json.dumps(EventSnapshot.from_record(event).to_dict()))

    click.echo(f"Starting chainwatch daemon (db: {cfg.db_path})")
    asyncio.run(run_daemon(cfg, on_event=_echo if print_events else None))


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show configuration and stored state."""
    cfg = _load(ctx)
    click.echo(f"Streaming:  {cfg.ws_url or '(disabled)'}")
    click.echo(f"Fallback:   {cfg.http_url}")
    click.echo(f"Batch size: {cfg.batch_size} blocks")
    click.echo(f"DB path:    {cfg.db_path}")

    async def _status():
        registry = SQLiteSubscriptionRegistry(cfg.db_path)
        events = SQLiteEventStore(cfg.db_path)
        await registry.initialize()
        await events.initialize()
        try:
            subs = await registry.list_all()
            pending = await registry.pending_rescans()
            click.echo("")
            click.echo(f"Subscriptions:   {len(subs)}")
            click.echo(f"Pending rescans: {len(pending)}")
            click.echo(f"Events stored:   {await events.count()}")
        finally:
            await events.close()
            await registry.close()

    asyncio.run(_status())


@cli.command()
@click.pass_context
def head(ctx: click.Context) -> None:
    """Query the node's latest block height."""
    cfg = _load(ctx)

    async def _head():
        link = ChainLink(
            ws_url="",
            http_url=cfg.http_url,
            request_timeout=cfg.request_timeout,
            rpc_retries=cfg.rpc_retries,
            retry_backoff=cfg.retry_backoff,
        )
        try:
            height = await link.latest_height()
        except ChainwatchError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)
        finally:
            await link.close()
        click.echo(str(height))

    asyncio.run(_head())


# ── Subscriptions ──────────────────────────────────────


@cli.command()
@click.argument("address")
@click.option("--abi", "abi_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Contract ABI JSON file")
@click.option("--signature", default=None, help="Event signature, e.g. 'Transfer(address,address,uint256)'")
@click.option("--event", "event_name", default=None, help="Event name to pick from the ABI")
@click.option("--from-block", type=int, default=0, help="First block to scan")
@click.pass_context
def subscribe(
    ctx: click.Context,
    address: str,
    abi_path: str | None,
    signature: str | None,
    event_name: str | None,
    from_block: int,
) -> None:
    """Register a contract to watch.

    A running daemon picks the subscription up on its next sync pass and
    starts backfilling from --from-block.
    """
    cfg = _load(ctx)

    descriptor = None
    if abi_path is not None:
        descriptor = Path(abi_path).read_text()

    try:
        sub = new_subscription(address, descriptor, signature, event_name, from_block)
    except InvalidSubscription as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    async def _subscribe():
        registry = SQLiteSubscriptionRegistry(cfg.db_path)
        await registry.initialize()
        try:
            await registry.add(sub)
        finally:
            await registry.close()

    asyncio.run(_subscribe())
    click.echo(sub.id)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def subscriptions(ctx: click.Context, as_json: bool) -> None:
    """List registered subscriptions and their checkpoints."""
    cfg = _load(ctx)

    async def _list():
        registry = SQLiteSubscriptionRegistry(cfg.db_path)
        await registry.initialize()
        try:
            return await registry.list_all()
        finally:
            await registry.close()

    subs = asyncio.run(_list())
    if as_json:
        click.echo(json.dumps([
            {
                "id": s.id,
                "contract_address": s.contract_address,
                "event_signature": s.event_signature,
                "event_name": s.event_name,
                "from_block": s.from_block,
                "last_processed_block": s.last_processed_block,
                "rescan_requested": s.rescan_requested,
            }
            for s in subs
        ], indent=2))
        return

    if not subs:
        click.echo("No subscriptions.")
        return
    for s in subs:
        checkpoint = "-" if s.last_processed_block is None else str(s.last_processed_block)
        source = s.event_signature or s.event_name or "*"
        flag = "  (rescan pending)" if s.rescan_requested else ""
        click.echo(f"{s.id}  {s.contract_address}  {source}  from={s.from_block}  at={checkpoint}{flag}")


@cli.command()
@click.option("--subscription", "subscription_id", default=None, help="Only this subscription's events")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def events(ctx: click.Context, subscription_id: str | None, as_json: bool) -> None:
    """List stored events."""
    cfg = _load(ctx)

    async def _list():
        store = SQLiteEventStore(cfg.db_path)
        await store.initialize()
        try:
            return await store.list_events(subscription_id)
        finally:
            await store.close()

    records = asyncio.run(_list())
    if as_json:
        click.echo(json.dumps([EventSnapshot.from_record(e).to_dict() for e in records], indent=2))
        return

    if not records:
        click.echo("No events.")
        return
    for e in records:
        name = e.decoded.name if e.decoded else "(undecoded)"
        click.echo(f"#{e.block_number}  {e.id}  {name}")


@cli.command()
@click.argument("subscription_id")
@click.pass_context
def rescan(ctx: click.Context, subscription_id: str) -> None:
    """Request a full rescan of a subscription from its from_block.

    This only flags the subscription. A running daemon resets the checkpoint
    and starts the sweep on its next sync pass; until then `subscriptions`
    shows the old checkpoint marked "(rescan pending)".
    """
    cfg = _load(ctx)

    async def _rescan():
        registry = SQLiteSubscriptionRegistry(cfg.db_path)
        await registry.initialize()
        try:
            await registry.request_rescan(subscription_id)
        finally:
            await registry.close()

    try:
        asyncio.run(_rescan())
    except NotFound:
        click.echo(f"Error: unknown subscription {subscription_id}", err=True)
        sys.exit(1)
    click.echo(f"Rescan requested for {subscription_id}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
