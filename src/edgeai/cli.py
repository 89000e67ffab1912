import asyncio

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.group()
def cli():
    """edgeai CLI - inspect configuration and exercise the coordination core."""
    pass


@cli.group()
def settings():
    """Commands for inspecting edgeai settings."""
    pass


@settings.command("show")
def show_settings():
    """Show registered settings and their effective values."""
    from edgeai.config.configuration import get_settings_registry
    from edgeai.config.environment import Environment

    table = Table(title="Settings")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    table.add_column("Description", style="yellow")

    for setting in get_settings_registry():
        value = Environment.get(setting.env_var)
        table.add_row(setting.env_var, "" if value is None else str(value), setting.description)

    console.print(table)


@cli.group()
def bridge():
    """Commands for the extension bridge."""
    pass


@bridge.command("simulate")
@click.argument("query")
@click.option(
    "--permission-mode",
    type=click.Choice(["ask", "permissive"]),
    default="ask",
    show_default=True,
    help="Permission mode the simulated extension announces.",
)
@click.option(
    "--behaviour",
    type=click.Choice(["respond", "deny", "error", "reload", "ignore"]),
    default="respond",
    show_default=True,
    help="How the simulated extension completes the request.",
)
@click.option("--max-results", default=5, show_default=True, help="Maximum number of results.")
@click.option("--timeout", default=2.0, show_default=True, help="Call deadline in seconds.")
def simulate_bridge(query: str, permission_mode: str, behaviour: str, max_results: int, timeout: float):
    """Run a search through the bridge against a simulated extension."""
    from edgeai.bridge import BridgeError, BroadcastChannel, ExtensionBridge
    from edgeai.bridge.simulated import SimulatedExtension

    async def run() -> int:
        channel = BroadcastChannel()
        extension = SimulatedExtension(channel, permission_mode=permission_mode, behaviour=behaviour)  # type: ignore[arg-type]
        ext_bridge = ExtensionBridge(
            channel, reconnect_delay=0.1, timeouts={"search": timeout, "search_only": timeout}
        )
        ext_bridge.on_status_change(lambda status: console.print(f"[dim]status:[/dim] {status.value}"))
        try:
            await extension.wait_until_connected(ext_bridge)
            console.print(f"[dim]permission mode:[/dim] {ext_bridge.get_permission_mode()}")
            response = await ext_bridge.search(query, max_results=max_results)
        except BridgeError as e:
            console.print(f"[red]{type(e).__name__}:[/red] {e}")
            return 1
        finally:
            ext_bridge.cleanup()
            extension.detach()

        table = Table(title=f"Results for {query!r}")
        table.add_column("#", style="dim")
        table.add_column("Title", style="cyan")
        table.add_column("URL", style="green", no_wrap=True)
        table.add_column("Words", justify="right")
        for i, result in enumerate(response.results, start=1):
            table.add_row(str(i), result.title, result.url, str(result.word_count))
        console.print(table)
        return 0

    exit_code = asyncio.run(run())
    if exit_code:
        raise SystemExit(exit_code)


@cli.group()
def scheduler():
    """Commands for the resource lock scheduler."""
    pass


@scheduler.command("demo")
@click.option("--tasks", default=5, show_default=True, help="Number of contending tasks.")
@click.option(
    "--resource",
    default="gpu",
    show_default=True,
    help="Resource kind the tasks contend for.",
)
@click.option("--hold", default=0.01, show_default=True, help="Seconds each task holds the lock.")
def scheduler_demo(tasks: int, resource: str, hold: float):
    """Run contending tasks on one resource and show the order they were served in."""
    from edgeai.concurrency.resource_scheduler import ResourceLockScheduler, UnknownResourceError
    from edgeai.config.environment import Environment

    async def run() -> list[int]:
        lock_scheduler = ResourceLockScheduler(Environment.get_resource_kinds())
        served: list[int] = []

        async def worker(i: int) -> None:
            async def work() -> None:
                served.append(i)
                await asyncio.sleep(hold)

            await lock_scheduler.with_lock(resource, work)

        workers = []
        for i in range(tasks):
            workers.append(asyncio.create_task(worker(i)))
            # Let each task reach the queue before starting the next
            await asyncio.sleep(0)
        await asyncio.gather(*workers)
        return served

    try:
        served = asyncio.run(run())
    except UnknownResourceError as e:
        raise click.BadParameter(str(e), param_hint="--resource") from e

    table = Table(title=f"Service order on {resource}")
    table.add_column("Position", style="dim")
    table.add_column("Task", style="cyan")
    for position, task_id in enumerate(served, start=1):
        table.add_row(str(position), f"task-{task_id}")
    console.print(table)


if __name__ == "__main__":
    cli()
