"""
Convergence Core - CLI Entry Point.

Provides:
- convergence status: Start the core once and show subsystem status
- convergence services: Discover and probe service endpoints
- convergence submit: Run a single task through the controller
- convergence serve: Run the HTTP API
- convergence unrestricted: Show the status with unrestricted mode enabled
- convergence notify: Send a one-off notification
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Configure logging early
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("convergence")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger("convergence").setLevel(level)
    logging.getLogger("convergence_core").setLevel(level)


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the Convergence CLI."""
    parser = argparse.ArgumentParser(
        prog="convergence",
        description="Convergence Core - Task Orchestration and Service Registry",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="YAML config file (defaults to $CONVERGENCE_CONFIG)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("status", help="Show subsystem status")
    subparsers.add_parser("services", help="Discover and probe service endpoints")

    submit_parser = subparsers.add_parser("submit", help="Run one task and wait for it")
    submit_parser.add_argument("type", help="Task type (voice, text, code, research, autonomous, custom)")
    submit_parser.add_argument(
        "--input",
        default="{}",
        help="Task input as a JSON object",
    )
    submit_parser.add_argument(
        "--priority",
        choices=["critical", "high", "normal", "low"],
        default="normal",
    )
    submit_parser.add_argument(
        "--wait",
        type=float,
        default=30.0,
        help="Seconds to wait for the task to finish",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8010)

    subparsers.add_parser("unrestricted", help="Enable unrestricted mode and show status")

    notify_parser = subparsers.add_parser("notify", help="Send a notification")
    notify_parser.add_argument("title")
    notify_parser.add_argument("body")
    notify_parser.add_argument(
        "--priority",
        choices=["low", "normal", "high", "urgent"],
        default="normal",
    )
    notify_parser.add_argument(
        "--channels",
        nargs="+",
        help="Delivery channels (default: configured channels)",
    )

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.version:
        from convergence_core import __version__
        print(f"Convergence Core v{__version__}")
        return 0

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "status":
        return asyncio.run(_show_status(args))
    elif args.command == "services":
        return asyncio.run(_show_services(args))
    elif args.command == "submit":
        return asyncio.run(_run_task(args))
    elif args.command == "serve":
        return _serve(args)
    elif args.command == "unrestricted":
        return asyncio.run(_show_status(args, unrestricted=True))
    elif args.command == "notify":
        return asyncio.run(_send_notification(args))

    return 0


def _load(args: argparse.Namespace):
    from convergence_core.config import load_config
    return load_config(args.config)


async def _show_status(args: argparse.Namespace, unrestricted: bool = False) -> int:
    """Start the core, run one round of health checks and print status."""
    from rich.console import Console
    from rich.table import Table

    from convergence_core.integration import create_convergence_core

    console = Console()
    config = _load(args)
    config.auto_notify = False
    core = create_convergence_core(config)

    await core.initialize()
    try:
        if unrestricted:
            core.enable_unrestricted_mode()
        await core.observability.run_health_checks()
        status = core.get_status()
    finally:
        await core.shutdown()

    console.print("[bold]Convergence Core Status[/bold]\n")

    table = Table(title="Subsystems")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    controller = status["controller"]
    registry = status["registry"]
    table.add_row("Mode", controller["mode"])
    table.add_row("Controller Running", str(controller["running"]))
    table.add_row("Capabilities", f"{controller['capabilities']['enabled']}/{controller['capabilities']['total']} enabled")
    table.add_row("Tasks Queued", str(controller["tasks"]["queued"]))
    table.add_row("Tasks Active", str(controller["tasks"]["active"]))
    table.add_row("Services", str(registry["services"]["total"]))
    table.add_row("Services Healthy", str(registry["services"]["healthy"]))
    table.add_row("Credentials", ", ".join(k for k, v in registry["credentials"].items() if v) or "none")
    table.add_row("Active Alerts", str(len(status["alerts"])))
    console.print(table)

    health = Table(title="Health Checks")
    health.add_column("Check", style="cyan")
    health.add_column("Status")
    health.add_column("Message")
    colors = {"healthy": "green", "degraded": "yellow", "unhealthy": "red", "unknown": "dim"}
    for result in status["health"]:
        color = colors.get(result["status"], "white")
        health.add_row(result["name"], f"[{color}]{result['status']}[/{color}]", result.get("message") or "")
    console.print(health)
    return 0


async def _show_services(args: argparse.Namespace) -> int:
    """Discover and probe endpoints without starting the controller."""
    from rich.console import Console
    from rich.table import Table

    from convergence_core.registry import ServiceRegistry

    console = Console()
    config = _load(args)
    registry = ServiceRegistry(config.registry)

    await registry.start()
    try:
        services = registry.get_services()
    finally:
        await registry.stop()

    if not services:
        console.print("[yellow]No services found.[/yellow]")
        return 0

    table = Table(title="Service Endpoints")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("URL")
    table.add_column("Status")
    table.add_column("Latency", justify="right")

    colors = {"healthy": "green", "degraded": "yellow", "unhealthy": "red", "unknown": "dim"}
    for service in services:
        color = colors.get(service.status.value, "white")
        latency = f"{service.latency_ms:.0f}ms" if service.latency_ms is not None else "-"
        table.add_row(
            service.id,
            service.type.value,
            service.url,
            f"[{color}]{service.status.value}[/{color}]",
            latency,
        )

    console.print(table)
    return 0


async def _run_task(args: argparse.Namespace) -> int:
    """Submit one task and wait for it to reach a terminal state."""
    from rich.console import Console

    from convergence_core.core.errors import ConvergenceError
    from convergence_core.integration import create_convergence_core

    console = Console()

    try:
        payload = json.loads(args.input)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid --input JSON: {e}[/red]")
        return 2

    config = _load(args)
    config.auto_discover = False
    config.autonomous = True
    core = create_convergence_core(config)

    await core.initialize()
    try:
        try:
            task = await core.submit_task(args.type, payload, priority=args.priority)
        except ConvergenceError as e:
            console.print(f"[red]{e}[/red]")
            return 2

        loop = asyncio.get_running_loop()
        deadline = loop.time() + args.wait
        while not task.is_terminal and loop.time() < deadline:
            await asyncio.sleep(0.05)
    finally:
        await core.shutdown()

    console.print_json(json.dumps(task.to_dict(), default=str))
    return 0 if task.status.value == "completed" else 1


def _serve(args: argparse.Namespace) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from convergence_core.api import create_app
    from convergence_core.integration import create_convergence_core

    app = create_app(create_convergence_core(_load(args)))
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.verbose else "info")
    return 0


async def _send_notification(args: argparse.Namespace) -> int:
    from rich.console import Console

    from convergence_core.notifications import NotificationManager

    console = Console()
    manager = NotificationManager(_load(args).notifications)
    message = await manager.notify(
        args.title,
        args.body,
        priority=args.priority,
        channels=args.channels,
    )

    if message.outcome != "sent":
        console.print(f"[yellow]Notification {message.outcome}[/yellow]")
        return 1

    console.print(f"[green]Sent {message.id}[/green] via {', '.join(message.delivered_channels) or 'no channel'}")
    return 0 if message.delivered else 1


if __name__ == "__main__":
    sys.exit(main())
