# =======================================================================================
# fieldsync/cli.py - Field Unit Command Line Interface
# =======================================================================================
import asyncio
import click
from .config import config, configure_logging
from .field.unit import FieldUnit
from .field.local_store import LocalStore
from .field.queue import DurableQueue
from .models.enums import ScanAction
from .utils.exceptions import FieldSyncError
from .workers.serial_worker import SerialWorker, capture_on_loop


@click.group()
@click.option("--db", "db_path", default=None, help="Local store path (defaults to LOCAL_DB_PATH)")
@click.pass_context
def cli(ctx, db_path):
    """FieldSync field unit"""
    configure_logging()
    ctx.obj = {"db_path": db_path or config.LOCAL_DB_PATH}


@cli.command()
@click.option("--serial/--no-serial", default=True, help="Read tags from the serial bridge")
@click.pass_context
def run(ctx, serial):
    """Run the unit until interrupted"""

    async def run_unit():
        unit = FieldUnit(store_path=ctx.obj["db_path"])
        await unit.start()
        worker = None
        if serial:
            worker = SerialWorker(capture_on_loop(unit.capturer, asyncio.get_running_loop()))
            worker.start()
        try:
            await asyncio.Event().wait()
        finally:
            if worker is not None:
                await asyncio.to_thread(worker.stop)
            await unit.stop()

    try:
        asyncio.run(run_unit())
    except KeyboardInterrupt:
        click.echo("Stopped")


@cli.command()
@click.argument("tag")
@click.option("--action", type=click.Choice([a.value for a in ScanAction]), default=ScanAction.SCAN.value)
@click.pass_context
def scan(ctx, tag, action):
    """Capture one tag read and try to sync it"""

    async def capture_one():
        unit = FieldUnit(store_path=ctx.obj["db_path"], live_feed=False)
        try:
            if unit.probe is not None:
                await unit.probe.check()
            event = await unit.capturer.capture(tag, ScanAction(action))
            click.echo(f"Captured {event.tag_id} ({event.action.value}) as {event.correlation_id}")
            report = await unit.engine.sync_now()
            if report is not None:
                click.echo(f"Sync: {report.outcome.value}, {report.accepted} accepted")
        finally:
            await unit.stop()

    try:
        asyncio.run(capture_one())
    except FieldSyncError as e:
        click.echo(f"Scan failed: {e}", err=True)
        raise click.Abort()


@cli.command()
@click.pass_context
def status(ctx):
    """Show queue and dead-letter counts"""
    store = LocalStore(ctx.obj["db_path"])
    queue = DurableQueue(store)
    try:
        dead = queue.dead_letter_count()
        click.echo(f"Queued scans:  {queue.size()}")
        click.echo(f"Dead letters:  {dead}")
        if dead:
            click.echo(f"  {dead} scans could not be synced")
    finally:
        store.close()


@cli.command()
@click.option("--refresh", is_flag=True, help="Refresh from the server first")
@click.pass_context
def tasks(ctx, refresh):
    """List cached field tasks"""

    async def list_tasks():
        unit = FieldUnit(store_path=ctx.obj["db_path"], live_feed=False)
        try:
            if refresh:
                await unit.probe.check()
                try:
                    await unit.tasks.refresh()
                except FieldSyncError as e:
                    click.echo(f"Refresh failed, showing cache: {e}", err=True)
            for task in unit.tasks.list():
                click.echo(f"  [{task.priority.value:>6}] {task.id}  {task.title}  @ {task.location}  due {task.due_time:%Y-%m-%d %H:%M}")
        finally:
            await unit.stop()

    asyncio.run(list_tasks())


@cli.command("dead-letters")
@click.option("--requeue", "requeue_id", default=None, help="Put a dead letter back in the queue")
@click.option("--discard", "discard_id", default=None, help="Delete a dead letter")
@click.pass_context
def dead_letters(ctx, requeue_id, discard_id):
    """Review scans the server rejected"""
    store = LocalStore(ctx.obj["db_path"])
    queue = DurableQueue(store)
    try:
        if requeue_id:
            event = queue.requeue_dead_letter(requeue_id)
            click.echo("Requeued" if event else f"No dead letter {requeue_id}")
            return
        if discard_id:
            click.echo("Discarded" if queue.discard_dead_letter(discard_id) else f"No dead letter {discard_id}")
            return
        for letter in queue.dead_letters():
            click.echo(f"  {letter.event.correlation_id}  {letter.event.tag_id}  {letter.reason}")
    finally:
        store.close()


if __name__ == "__main__":
    cli()
