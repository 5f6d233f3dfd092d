"""Command line tools for flow documents.

    python -m flowpath.flow_core.cli validate flow.json --tier free
    python -m flowpath.flow_core.cli walk flow.json --user demo-user
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .engine import FlowRouter
from .errors import FlowpathError
from .ir import DisplayComponent, Flow, FlowNode
from .quota import Tier, limits_for
from .validator import validate

console = Console()

# Component types that collect an answer from the user
_TEXT_INPUTS = {"short-answer", "long-answer", "text-input", "communication-style"}
_CHOICE_INPUTS = {"multiple-choice", "role-selector", "preference-poll", "privacy-consent"}
_MULTI_INPUTS = {"checkbox-multi"}
_NUMBER_INPUTS = {"scale-slider", "kpi-input", "commitment-assessment", "feature-rating"}


def _playground_flow_path() -> Path:
    """Return backend/playground/onboarding_example.json resolved from this file."""
    # __file__ = backend/flowpath/flow_core/cli.py -> parents[2] = backend
    return Path(__file__).resolve().parents[2] / "playground" / "onboarding_example.json"


def load_flow(path: Path) -> Flow:
    data = json.loads(path.read_text(encoding="utf-8"))
    data.setdefault("owner_id", "cli")
    data.setdefault("title", path.stem)
    return Flow.model_validate(data)


def response_key(component: DisplayComponent) -> str:
    return str(component.config.get("key") or component.id)


def _ask(component: DisplayComponent) -> Any:
    label = escape(str(component.config.get("label") or response_key(component)))
    options = [str(o) for o in component.config.get("options", [])]
    if component.type in _CHOICE_INPUTS and options:
        return Prompt.ask(f"[bold cyan]{label}[/bold cyan]", choices=options)
    if component.type in _MULTI_INPUTS:
        hint = f" ({', '.join(options)})" if options else ""
        raw = Prompt.ask(f"[bold cyan]{label}[/bold cyan]{escape(hint)} comma separated", default="")
        return [part.strip() for part in raw.split(",") if part.strip()]
    if component.type in _NUMBER_INPUTS:
        raw = Prompt.ask(f"[bold cyan]{label}[/bold cyan] (number)", default="")
        try:
            return float(raw) if raw else None
        except ValueError:
            return raw
    return Prompt.ask(f"[bold cyan]{label}[/bold cyan]", default="")


def _is_input(component: DisplayComponent) -> bool:
    return component.type in _TEXT_INPUTS | _CHOICE_INPUTS | _MULTI_INPUTS | _NUMBER_INPUTS


def _show_node(node: FlowNode) -> None:
    lines = []
    for component in node.components:
        text = component.config.get("text") or component.config.get("label") or ""
        lines.append(f"[dim]{component.type}[/dim] {escape(str(text))}")
    console.print(
        Panel("\n".join(lines) or "[dim]no content[/dim]", title=escape(node.title), border_style="blue")
    )


def cmd_validate(args: argparse.Namespace) -> int:
    flow = load_flow(args.json_path)
    limits = limits_for(Tier(args.tier))
    result = validate(flow, max_nodes=limits.max_nodes_per_flow)
    if result.ok:
        console.print(
            f"[green]✅ {escape(flow.title)} is valid[/green] "
            f"({len(flow.nodes)} nodes, {len(flow.logic_blocks)} logic blocks)"
        )
        return 0

    table = Table(title=f"Violations in {flow.title}")
    table.add_column("Kind", style="red")
    table.add_column("Elements")
    table.add_column("Message")
    for violation in result.violations:
        table.add_row(violation.kind, ", ".join(violation.element_ids), violation.message)
    console.print(table)
    return 1


def cmd_walk(args: argparse.Namespace) -> int:
    flow = load_flow(args.json_path)
    router = FlowRouter(flow)
    responses: dict[str, Any] = {}
    path: list[str] = []

    console.print(Panel(f"[bold]{escape(flow.title)}[/bold]", title="Flow walk", border_style="cyan"))
    step = router.first_step(responses, user_id=args.user)
    while not step.is_end and step.node is not None:
        node = step.node
        path.append(node.id)
        _show_node(node)
        for component in node.components:
            if _is_input(component):
                answer = _ask(component)
                if answer not in (None, "", []):
                    responses[response_key(component)] = answer
        step = router.next_step(node.id, responses, user_id=args.user)
        if step.evaluated_blocks:
            console.print(f"[dim]via {' -> '.join(step.evaluated_blocks)}[/dim]")

    console.print("[green]🏁 Flow complete[/green]")
    console.print(f"Path: {' -> '.join(path) or '(empty)'}")
    console.print_json(json.dumps(responses, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate or walk a flow JSON document")
    sub = parser.add_subparsers(dest="command", required=True)

    validate_parser = sub.add_parser("validate", help="Report structural violations")
    validate_parser.add_argument(
        "json_path", nargs="?", type=Path, default=_playground_flow_path(), help="Flow JSON file"
    )
    validate_parser.add_argument(
        "--tier",
        choices=[t.value for t in Tier],
        default=Tier.active.value,
        help="Membership tier whose node limit applies (default: active)",
    )
    validate_parser.set_defaults(handler=cmd_validate)

    walk_parser = sub.add_parser("walk", help="Traverse the flow interactively")
    walk_parser.add_argument(
        "json_path", nargs="?", type=Path, default=_playground_flow_path(), help="Flow JSON file"
    )
    walk_parser.add_argument("--user", default="cli-user", help="User id for A/B assignment")
    walk_parser.set_defaults(handler=cmd_walk)
    return parser


def run_cli(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        console.print(f"[red]❌ Could not load {escape(str(args.json_path))}: {escape(str(e))}[/red]")
        return 2
    except FlowpathError as e:
        console.print(f"[red]❌ {type(e).__name__}: {escape(str(e))}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
