from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Callable

import yaml

from dotlink.config import DEFAULT_CONFIG_NAME, load_config, select_links
from dotlink.link_engine import link_state
from dotlink.log_setup import configure_logging, default_log_file
from dotlink.run_service import (
    EXIT_INVALID_CONFIG,
    EXIT_RUNTIME_OR_CONFIG_ERROR,
    EXIT_SUCCESS,
    RunOptions,
    run_setup,
)


COMMANDS = {"run", "validate-config", "list"}

COMPONENT_PROMPTS = {
    "repository": "Clone the dotfiles repository if missing?",
    "directories": "Create configured directories?",
    "tools": "Install missing tools?",
    "links": "Create symbolic links?",
}


def _default_config() -> Path:
    return Path.cwd() / DEFAULT_CONFIG_NAME


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dotlink", description="Link a dotfiles repository into place")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Install tools and synchronize links (default)")
    run_parser.add_argument("--config", type=Path, default=_default_config())
    run_parser.add_argument("--interactive", action="store_true", help="Ask which components to set up")
    run_parser.add_argument("--skip-tools", action="store_true")
    run_parser.add_argument("--skip-links", action="store_true")
    run_parser.add_argument("--dry-run", action="store_true", help="Report actions without applying them")
    run_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    run_parser.add_argument("--link", help="Synchronize only one link (label or file name)")
    run_parser.add_argument("--log-file", type=Path, default=None)
    run_parser.add_argument("--verbose", "-v", action="store_true")

    validate_parser = subparsers.add_parser("validate-config", help="Validate config")
    validate_parser.add_argument("--config", type=Path, default=_default_config())

    list_parser = subparsers.add_parser("list", help="List link mappings and their current state")
    list_parser.add_argument("--config", type=Path, default=_default_config())
    list_parser.add_argument("--link", help="List only one link (label or file name)")

    return parser


def is_interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def ask_yes_no(question: str, default: bool = True) -> bool:
    hint = "[Y/n]" if default else "[y/N]"
    try:
        answer = input(f"{question} {hint} ").strip().lower()
    except EOFError:
        return default
    if not answer:
        return default
    return answer in {"y", "yes"}


def _component_prompt(ask: Callable[[str], bool]) -> Callable[[str], bool]:
    def _confirm(component: str) -> bool:
        return ask(COMPONENT_PROMPTS.get(component, f"Set up {component}?"))

    return _confirm


def cmd_validate(config_path: Path) -> int:
    try:
        config = load_config(config_path)
    except (ValueError, OSError, yaml.YAMLError) as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    print(f"Valid config: {config_path}")
    print(
        f"  repoRoot={config.repo_root} "
        f"links={len(config.links)} "
        f"tools={len(config.tools)} "
        f"directories={len(config.directories)} "
        f"requireElevation={str(config.require_elevation).lower()}"
    )
    if config.repository is not None:
        print(f"  repository={config.repository.url}")
    return EXIT_SUCCESS


def cmd_list(config_path: Path, link_filter: str | None) -> int:
    try:
        config = load_config(config_path)
        links = select_links(config, link_filter)
    except (ValueError, OSError, yaml.YAMLError) as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    for entry in links:
        marker = " (required)" if entry.required else ""
        print(f"  - [{link_state(entry)}] {entry.label}: {entry.target} -> {entry.source}{marker}")
    for tool in config.tools:
        print(f"  - [tool] {tool.name}: {' '.join(tool.install)}")
    return EXIT_SUCCESS


def cmd_run(args: argparse.Namespace, ask: Callable[[str], bool] = ask_yes_no) -> int:
    configure_logging(args.log_file or default_log_file(), verbose=args.verbose)

    if not args.yes and not args.dry_run and not args.interactive and is_interactive():
        if not ask(f"Apply dotfiles from {args.config}?"):
            print("Setup cancelled.")
            return EXIT_RUNTIME_OR_CONFIG_ERROR

    options = RunOptions(
        dry_run=args.dry_run,
        skip_tools=args.skip_tools,
        skip_links=args.skip_links,
        link_filter=args.link,
        confirm=_component_prompt(ask) if args.interactive else None,
    )
    exit_code, _ = run_setup(args.config, options)
    return exit_code


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or (argv[0] not in COMMANDS and argv[0] not in {"-h", "--help"}):
        argv.insert(0, "run")

    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "validate-config":
        return cmd_validate(args.config)
    if args.command == "list":
        return cmd_list(args.config, args.link)
    if args.command == "run":
        return cmd_run(args)

    parser.print_help()
    return EXIT_RUNTIME_OR_CONFIG_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
