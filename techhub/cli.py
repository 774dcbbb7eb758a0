"""
TechHub CLI - Command line interface for background work.

Usage:
    techhub --help            Show all commands
    techhub worker            Run delivery workers and the retention schedule
    techhub drain             Deliver every due task, then exit
    techhub sweep             Run one retention sweep
    techhub status            Show the delivery queue size
"""

import asyncio

import typer

app = typer.Typer(
    name="techhub",
    help="TechHub CLI - Newsletter delivery jobs",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def worker(
    workers: int | None = typer.Option(
        None, "--workers", "-w", help="Number of delivery loops (defaults to config.yml)"
    ),
):
    """Run delivery workers and the retention scheduler until interrupted."""
    from techhub.config import get_config
    from techhub.core.database import AsyncSessionLocal
    from techhub.core.logging import setup_logging
    from techhub.core.scheduler import start_scheduler, stop_scheduler
    from techhub.services.delivery_worker import DeliveryWorker

    setup_logging()
    config = get_config().delivery
    count = workers if workers is not None else config.worker_count

    async def run() -> None:
        loops = [
            DeliveryWorker(AsyncSessionLocal, config, name=f"delivery-worker-{index}")
            for index in range(count)
        ]
        await start_scheduler()
        try:
            await asyncio.gather(*(loop.run_until_stopped() for loop in loops))
        finally:
            await stop_scheduler()

    typer.echo(f"\n📬 Starting {count} delivery worker(s)... (Ctrl+C to stop)")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        typer.echo("\nStopped.")


@app.command()
def drain():
    """Process every due delivery task, then exit."""
    from techhub.config import get_config
    from techhub.core.database import AsyncSessionLocal
    from techhub.core.logging import setup_logging
    from techhub.services.delivery_worker import DeliveryWorker

    setup_logging()

    delivery_worker = DeliveryWorker(AsyncSessionLocal, get_config().delivery, name="drain")
    try:
        processed = asyncio.run(delivery_worker.drain())
    except Exception as e:
        _print_error(f"Drain failed: {e}")
        raise typer.Exit(1) from e

    _print_success(f"Processed {processed} task(s)")


@app.command()
def sweep():
    """Delete expired idempotency records and old newsletter issues."""
    from techhub.config import get_config
    from techhub.core.database import AsyncSessionLocal
    from techhub.core.logging import setup_logging
    from techhub.services.retention import run_retention_sweep

    setup_logging()

    stats = asyncio.run(run_retention_sweep(AsyncSessionLocal, get_config().retention))

    _print_success(f"Idempotency records deleted: {stats['idempotency_deleted']}")
    _print_success(f"Issues deleted: {stats['issues_deleted']}")
    for error in stats["errors"]:
        _print_warning(error)
    if stats["errors"]:
        raise typer.Exit(1)


@app.command()
def status():
    """Show how many delivery tasks are waiting."""
    from techhub.core.database import AsyncSessionLocal
    from techhub.services.delivery_queue import count_pending_tasks

    async def run() -> int:
        async with AsyncSessionLocal() as db:
            return await count_pending_tasks(db)

    pending = asyncio.run(run())
    typer.echo(f"Pending delivery tasks: {pending}")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "techhub.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
