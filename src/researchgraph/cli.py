"""CLI entry point for researchgraph."""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, is_dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from researchgraph.recipes.competitor_analysis import CompetitorAnalysis, build_graph, select_research_nodes
from researchgraph.recipes.competitor_models import CompetitorAnalysisInput, FocusAreas


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="researchgraph",
        description="Workflow graphs with dynamic fan-out for AI research agents",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")

    comp = sub.add_parser("competitor", help="Run the competitor analysis agent")
    comp.add_argument("--input", required=True, help="Path to a YAML or JSON request file")
    comp.add_argument("--focus", default=None, help="Comma-separated focus areas (e.g. 'financial,news')")
    comp.add_argument("--thread-id", default=None, help="Correlation id for logs")
    comp.add_argument("--model", default=None, help="Override the Claude model")
    comp.add_argument("--timeout", type=float, default=None, help="Abandon the run after this many seconds")
    comp.add_argument("--stream", action="store_true", help="Print each superstep as it completes")
    comp.add_argument("--dry-run", action="store_true", help="Print graph levels and selected branches only")

    return parser


def load_request(path: str, focus: str | None = None) -> CompetitorAnalysisInput:
    """Load an agent request from YAML (JSON is accepted as YAML)."""
    data = yaml.safe_load(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    request = CompetitorAnalysisInput.from_dict(data.get("input", data))
    if focus:
        names = [f.strip() for f in focus.split(",") if f.strip()]
        request = replace(request, focus_areas=FocusAreas.only(*names))
    return request


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return str(value)


async def _run_competitor(args: argparse.Namespace) -> int:
    request = load_request(args.input, args.focus)
    graph = build_graph(model=args.model)

    print(f"Competitor: {request.competitor_name}")
    print(f"Nodes: {len(graph)}")
    for i, level in enumerate(graph.levels):
        print(f"  Level {i}: {list(level)}")
    print(f"Branches: {select_research_nodes(request.focus_areas)}")

    if args.dry_run:
        print("\nDry run — no nodes executed.")
        return 0

    agent = CompetitorAnalysis(graph)
    config: dict[str, Any] = {}
    if args.thread_id:
        config["thread_id"] = args.thread_id
    if args.timeout:
        config["timeout"] = args.timeout

    print()
    if args.stream:
        state: dict[str, Any] = {}
        async for item in agent.stream(request, config):
            if isinstance(item, dict):
                state = item
                break
            status = "ok" if item.ok else f"{len(item.errors)} error(s)"
            print(f"Step {item.step}: {list(item.nodes)} ({status})")
            state = dict(item.state)
    else:
        state = await agent.ainvoke(request, config)

    if state.get("error"):
        print(f"\nError: {state['error']}")
        return 1

    output = state.get("output")
    if output is None:
        print("\nNo output produced.")
        return 1
    print(f"\n{output.summary}")
    if args.verbose:
        print(json.dumps(output.to_dict(), indent=2, default=_jsonable))
    return 0


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    if args.command == "competitor":
        code = asyncio.run(_run_competitor(args))
        sys.exit(code)
    else:
        parser.print_help()
        sys.exit(1)
