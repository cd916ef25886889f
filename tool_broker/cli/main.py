from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from tool_broker import config
from tool_broker.broker import Broker
from tool_broker.errors import BrokerError
from tool_broker.schema import InvocationRequest, ToolExecutionContext
from tool_broker.tools.factory import ToolFactory

logger = logging.getLogger("tool_broker.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tool-broker", description="Register configured providers and use their tools.")
    parser.add_argument("--config", default=None, help="Path to tool_broker.json")
    parser.add_argument("--debug", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("providers", help="Show providers and their status")

    tools = sub.add_parser("tools", help="List discovered tools")
    group = tools.add_mutually_exclusive_group()
    group.add_argument("--pattern", default=None, help="Regex on tool names (case-insensitive)")
    group.add_argument("--toolset", default=None, help="Named toolset from config")
    tools.add_argument("--json", action="store_true", help="Print OpenAI function schemas")

    call = sub.add_parser("call", help="Invoke one tool")
    call.add_argument("provider")
    call.add_argument("tool")
    call.add_argument("--args", default="{}", help="JSON object of arguments")
    call.add_argument("--timeout", type=int, default=None, help="Timeout override in milliseconds")
    return parser


async def _register_all(broker: Broker, cfg: dict) -> None:
    for pc in config.provider_configs(cfg):
        try:
            await broker.register_provider(pc)
        except BrokerError as e:
            logger.warning(f"Skipping provider {pc.name}: {e}")


def _print_providers(broker: Broker, console: Console) -> None:
    table = Table(title="Providers")
    for col in ("name", "type", "url", "status", "tools", "error"):
        table.add_column(col)
    for p in broker.get_all_providers():
        table.add_row(
            p.name,
            p.type,
            p.url,
            p.status.value,
            str(len(broker.get_provider_tools(p.name))),
            p.error or "",
        )
    console.print(table)


def _print_tools(factory: ToolFactory, args: argparse.Namespace, console: Console) -> None:
    if args.toolset:
        tools = factory.create_toolset(args.toolset)
    elif args.pattern:
        tools = factory.create_tools_by_pattern(args.pattern)
    else:
        tools = factory.create_all_tools()

    registry = factory.build_registry(tools)
    if args.json:
        console.print_json(json.dumps(registry.to_openai_tools()))
        return

    table = Table(title=f"Tools ({len(registry)})")
    table.add_column("provider")
    table.add_column("name")
    table.add_column("required")
    table.add_column("description")
    for name in registry.names():
        t = registry.get(name)
        table.add_row(t.provider, t.name, ", ".join(t.parameters.get("required", [])), t.description)
    console.print(table)
    for t in registry.shadowed:
        console.print(f"[yellow]{t.capability} is shadowed by a later provider[/yellow]")


async def _call(broker: Broker, args: argparse.Namespace, cfg: dict, console: Console) -> int:
    try:
        arguments = json.loads(args.args or "{}")
    except ValueError as e:
        console.print(f"[red]--args is not valid JSON: {e}[/red]")
        return 2
    if not isinstance(arguments, dict):
        console.print("[red]--args must be a JSON object[/red]")
        return 2

    request = InvocationRequest(provider=args.provider, capability=args.tool, args=arguments, timeout_ms=args.timeout)
    try:
        result = await broker.invoke(request, ToolExecutionContext(agent_name="cli"))
        console.print_json(json.dumps(result.to_dict(), default=str))
        code = 0 if result.success else 1
    except BrokerError as e:
        console.print_json(json.dumps(e.to_dict()))
        code = 1

    records = broker.get_execution_history(limit=config.history_limit(cfg))
    for rec in records:
        console.print(
            f"[dim]{rec.id} status={rec.status.value} timeout={rec.timeout_ms}ms "
            f"elapsed={rec.result.execution_time_ms if rec.result else None}ms[/dim]"
        )
    return code


async def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = config.load_config_uncached(args.config)
    logging.basicConfig(level=logging.DEBUG if args.debug else config.log_level(cfg))
    console = Console()

    async with Broker(config.broker_config(cfg)) as broker:
        await _register_all(broker, cfg)
        if args.command == "providers":
            _print_providers(broker, console)
            return 0
        if args.command == "tools":
            factory = ToolFactory(broker, agent_name="cli", toolsets=config.toolsets(cfg))
            try:
                _print_tools(factory, args, console)
            except KeyError as e:
                console.print(f"[red]{e.args[0]}[/red]")
                return 2
            return 0
        return await _call(broker, args, cfg, console)


def main() -> None:
    load_dotenv()
    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
