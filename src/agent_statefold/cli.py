#!/usr/bin/env python3
"""
Command-line interface for agent-statefold.

Usage:
    statefold init
    statefold leaves
    statefold tree
    statefold resolve react_help
    statefold resolve "assistant > react_help" --json
    statefold scan --state react_help "tell me about react" "and node?"
    statefold levels
    statefold telemetry
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from .config import Config, build_orchestrator, build_resolver
from .errors import StatefoldError
from .logs import setup_logging
from .orchestrator import TelemetryLogger, describe_levels

DEFAULT_CONFIG = "statefold.yaml"


def _load(args) -> Config:
    config = Config.load(args.config)
    setup_logging(args.log_level or config.log_level, config.log_format)
    return config


def cmd_init(args):
    """Write a starter config."""
    config_path = Path(args.output or args.config)

    if config_path.exists() and not args.force:
        print(f"Config already exists: {config_path}")
        print("Use --force to overwrite.")
        return

    config = Config.default()
    config.save(str(config_path))
    print(f"✓ Created config: {config_path}")
    print(f"✓ {len(build_resolver(config).leaves)} leaf states, {len(config.contexts)} contexts")


def cmd_leaves(args):
    """List resolved leaf states."""
    resolver = build_resolver(_load(args))
    leaves = resolver.get_leaf_state_tree()
    if not leaves:
        print("No leaf states defined.")
        return
    print(f"{'Key':<20} {'Path':<40} {'Description'}")
    print("-" * 90)
    for leaf in leaves:
        print(f"{leaf.key:<20} {' > '.join(leaf.path):<40} {leaf.description}")


def cmd_tree(args):
    """Print the whole state tree."""
    resolver = build_resolver(_load(args))
    nodes = resolver.get_state_tree()
    if not nodes:
        print("No states defined.")
        return
    for node in nodes:
        indent = "  " * (len(node.path) - 1)
        marker = "•" if node.is_leaf else "▸"
        print(f"{indent}{marker} {node.key}: {node.description}")


def cmd_resolve(args):
    """Show one fully resolved leaf."""
    resolver = build_resolver(_load(args))
    state = resolver.find_leaf(args.key)
    if state is None:
        print(f"No leaf state at '{args.key}'.")
        sys.exit(1)

    if args.json:
        print(json.dumps({
            "key": state.key,
            "path": list(state.path),
            "full_prompt": state.full_prompt,
            "contexts": state.context_keys(),
            "tools": state.tool_names(),
            "model_parameters": state.model_parameters.to_dict(),
            "metadata": dict(state.metadata),
        }, indent=2))
        return

    print(f"🧭 {state.path_label}")
    print("=" * 60)
    print(state.full_prompt or "(no prompt)")
    print("=" * 60)
    print(f"Contexts: {', '.join(state.context_keys()) or 'none'}")
    print(f"Tools:    {', '.join(state.tool_names()) or 'none'}")
    params = state.model_parameters.to_dict()
    params.pop("api_key", None)
    print(f"Model:    {json.dumps(params)}")


async def _scan(config: Config, args):
    resolver = build_resolver(config)
    state = resolver.find_leaf(args.state)
    if state is None:
        print(f"No leaf state at '{args.state}'.")
        sys.exit(1)

    async with build_orchestrator(config) as orchestrator:
        if args.level:
            orchestrator.set_level(args.level)
        results = []
        for text in args.texts:
            results.append(await orchestrator.orchestrate(args.session, text, state))
        await orchestrator.end_session(args.session)
    return results


def cmd_scan(args):
    """Run the orchestrator over one or more turns."""
    config = _load(args)
    results = asyncio.run(_scan(config, args))

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return

    for text, result in zip(args.texts, results):
        print(f"🔎 Turn {result.turn}: {text}")
        print(f"   Strategy: {result.context_strategy} "
              f"({result.tokens_used}/{result.budget} tokens, {result.latency_ms:.1f}ms)")
        for sc in result.selected:
            print(f"   [{sc.key}] score {sc.score:.3f}")
        concepts = ", ".join(f"{c}={s:.2f}" for c, s in result.concept_map[:8])
        print(f"   Concepts: {concepts or 'none'}")
        if result.knowledge_degraded:
            print("   ⚠ Knowledge base unavailable, local scoring only")
        print(f"   Reasoning: {result.reasoning_chain[-1]}")
        print()


def cmd_levels(args):
    """Describe curation levels."""
    print(describe_levels())


def cmd_telemetry(args):
    """Show telemetry summary."""
    path = args.path
    if not path and Path(args.config).exists():
        path = Config.load(args.config).telemetry_path
    if not path:
        print("No telemetry path configured. Pass --path or set telemetry_path.")
        sys.exit(1)

    telem = TelemetryLogger(path)
    summary = telem.get_summary(
        session_id=args.session,
        last_n_turns=args.last
    )
    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print(telem.format_summary(summary))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Hierarchical agent states and turn-by-turn context orchestration",
        prog="statefold"
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to config file (default: {DEFAULT_CONFIG})"
    )
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    p_init = subparsers.add_parser("init", help="Write a starter config")
    p_init.add_argument("-o", "--output", help="Config file path")
    p_init.add_argument("-f", "--force", action="store_true", help="Overwrite existing")
    p_init.set_defaults(func=cmd_init)

    # leaves
    p_leaves = subparsers.add_parser("leaves", help="List leaf states")
    p_leaves.set_defaults(func=cmd_leaves)

    # tree
    p_tree = subparsers.add_parser("tree", help="Print the state tree")
    p_tree.set_defaults(func=cmd_tree)

    # resolve
    p_resolve = subparsers.add_parser("resolve", help="Show a resolved leaf state")
    p_resolve.add_argument("key", help="Leaf state key or path (\"a > b\")")
    p_resolve.add_argument("--json", action="store_true", help="Output as JSON")
    p_resolve.set_defaults(func=cmd_resolve)

    # scan
    p_scan = subparsers.add_parser("scan", help="Orchestrate context for one or more turns")
    p_scan.add_argument("texts", nargs="+", help="User messages, one per turn")
    p_scan.add_argument("--state", required=True, help="Leaf state key or path (\"a > b\")")
    p_scan.add_argument("-s", "--session", default="cli", help="Session ID")
    p_scan.add_argument("-l", "--level", help="Curation level (1-5 or name)")
    p_scan.add_argument("--json", action="store_true", help="Output as JSON")
    p_scan.set_defaults(func=cmd_scan)

    # levels
    p_levels = subparsers.add_parser("levels", help="Describe curation levels")
    p_levels.set_defaults(func=cmd_levels)

    # telemetry
    p_telem = subparsers.add_parser("telemetry", help="Show telemetry summary")
    p_telem.add_argument("-p", "--path", help="Telemetry JSONL file")
    p_telem.add_argument("-s", "--session", help="Filter by session ID")
    p_telem.add_argument("-n", "--last", type=int, help="Last N turns")
    p_telem.add_argument("--json", action="store_true", help="Output as JSON")
    p_telem.set_defaults(func=cmd_telemetry)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except FileNotFoundError as e:
        if args.command != "init":
            print(f"{e}. Run 'statefold init' first, or specify --config.")
            sys.exit(1)
        raise
    except StatefoldError as e:
        print(f"✗ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nAborted.")
        sys.exit(1)


if __name__ == "__main__":
    main()
