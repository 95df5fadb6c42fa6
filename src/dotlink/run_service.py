from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from pathlib import Path
from typing import Callable

import yaml

from dotlink.config import AppConfig, LinkEntry, load_config, select_links
from dotlink.link_engine import LinkRunOptions, sync_link
from dotlink.models import (
    DIR_FAILED,
    DIR_PRESENT,
    LINK_FAILED,
    LINK_MISSING_SOURCE,
    TOOL_FAILED,
    TOOL_WOULD_INSTALL,
    LinkResult,
    LinkStats,
    ToolStats,
)
from dotlink.privileges import PreconditionError, require_symlink_privilege
from dotlink.tools import ToolRunOptions, ensure_directory, ensure_repository, ensure_tool


EXIT_SUCCESS = 0
EXIT_RUNTIME_OR_CONFIG_ERROR = 1
EXIT_PARTIAL_FAILURES = 2
EXIT_INVALID_CONFIG = 3
EXIT_PRECONDITION_FAILED = 4

COMPONENTS = ("repository", "directories", "tools", "links")


@dataclass(slots=True)
class RunOptions:
    dry_run: bool = False
    skip_tools: bool = False
    skip_links: bool = False
    link_filter: str | None = None
    confirm: Callable[[str], bool] | None = None
    privilege_check: Callable[[], None] = field(default=require_symlink_privilege)
    tool_options: ToolRunOptions | None = None
    link_options: LinkRunOptions | None = None


@dataclass(slots=True)
class RunSummary:
    links: LinkStats = field(default_factory=LinkStats)
    tools: ToolStats = field(default_factory=ToolStats)
    directories_created: int = 0
    directories_failed: int = 0
    partial_failures: bool = False

    def absorb_link(self, result: LinkResult) -> None:
        self.links.absorb(result)
        if result.outcome == LINK_FAILED:
            self.partial_failures = True

    def tally(self) -> str:
        return (
            f"links: created={self.links.created} skipped={self.links.skipped} "
            f"backed_up={self.links.backed_up} failed={self.links.failed} | "
            f"tools: present={self.tools.present} installed={self.tools.installed} "
            f"failed={self.tools.failed}"
        )


def _log_link(log: logging.Logger, result: LinkResult, prefix: str) -> None:
    mapping = f"{result.target} -> {result.source}"
    if result.outcome == LINK_FAILED:
        log.error("%s[link] %s: failed %s (%s)", prefix, result.label, mapping, result.error)
        if result.backup is not None:
            log.error("%s[link] %s: original kept at %s", prefix, result.label, result.backup)
    elif result.outcome == LINK_MISSING_SOURCE:
        log.warning("%s[link] %s: skipped, source missing (%s)", prefix, result.label, result.source)
    elif result.backup is not None:
        log.info("%s[link] %s: %s %s (backup: %s)", prefix, result.label, result.outcome, mapping, result.backup)
    else:
        log.info("%s[link] %s: %s %s", prefix, result.label, result.outcome, mapping)


def _missing_required_sources(links: list[LinkEntry]) -> list[LinkEntry]:
    return [entry for entry in links if entry.required and not entry.source.exists()]


def _select_components(config: AppConfig, options: RunOptions, links: list[LinkEntry]) -> set[str]:
    available: set[str] = set()
    if config.repository is not None:
        available.add("repository")
    if config.directories:
        available.add("directories")
    if config.tools and not options.skip_tools:
        available.add("tools")
    if links and not options.skip_links:
        available.add("links")

    if options.confirm is None:
        return available
    return {component for component in COMPONENTS if component in available and options.confirm(component)}


def run_setup(
    config_path: Path,
    options: RunOptions | None = None,
    logger: logging.Logger | None = None,
) -> tuple[int, RunSummary]:
    log = logger or logging.getLogger("dotlink.run")
    options = options or RunOptions()
    prefix = "[dry-run] " if options.dry_run else ""
    summary = RunSummary()

    try:
        config = load_config(config_path)
        links = select_links(config, options.link_filter)
    except (ValueError, OSError, yaml.YAMLError) as exc:
        log.error("Invalid config: %s", exc)
        summary.partial_failures = True
        return EXIT_INVALID_CONFIG, summary

    components = _select_components(config, options, links)
    tool_options = replace(options.tool_options or ToolRunOptions(), dry_run=options.dry_run)
    link_options = replace(options.link_options or LinkRunOptions(), dry_run=options.dry_run)

    try:
        if "links" in components and config.require_elevation:
            try:
                options.privilege_check()
            except PreconditionError:
                if not options.dry_run:
                    raise
                log.warning("%sSymbolic link privilege missing; a real run would abort", prefix)

        repo_pending = False
        if "repository" in components and config.repository is not None:
            outcome, error = ensure_repository(config.repo_root, config.repository, tool_options)
            if outcome == TOOL_FAILED:
                raise PreconditionError(f"Could not clone {config.repository.url}: {error}")
            repo_pending = outcome == TOOL_WOULD_INSTALL
            log.info("%s[repository] %s: %s", prefix, config.repo_root, outcome)

        if "links" in components and not repo_pending:
            missing = _missing_required_sources(links)
            if missing:
                names = ", ".join(f"{entry.label} ({entry.source})" for entry in missing)
                raise PreconditionError(f"Required source file(s) missing: {names}")
    except PreconditionError as exc:
        log.error("Aborting: %s", exc)
        summary.partial_failures = True
        return EXIT_PRECONDITION_FAILED, summary

    if "directories" in components:
        for directory in config.directories:
            outcome, error = ensure_directory(directory, dry_run=options.dry_run)
            if outcome == DIR_FAILED:
                summary.directories_failed += 1
                summary.partial_failures = True
                log.error("%s[dir] %s: failed (%s)", prefix, directory, error)
                continue
            if outcome != DIR_PRESENT:
                summary.directories_created += 1
            log.info("%s[dir] %s: %s", prefix, directory, outcome)

    if "tools" in components:
        for tool in config.tools:
            result = ensure_tool(tool, tool_options)
            if result.env is not None:
                tool_options = replace(tool_options, env=result.env)
            summary.tools.absorb(result)
            if result.outcome == TOOL_FAILED:
                summary.partial_failures = True
                log.error(
                    "%s[tool] %s: failed after %s attempt(s) (%s)",
                    prefix,
                    tool.name,
                    result.attempts,
                    result.error,
                )
            else:
                log.info("%s[tool] %s: %s", prefix, tool.name, result.outcome)

    if "links" in components:
        for entry in links:
            result = sync_link(entry, link_options)
            summary.absorb_link(result)
            _log_link(log, result, prefix)

    log.info("%sSummary %s", prefix, summary.tally())
    exit_code = EXIT_PARTIAL_FAILURES if summary.partial_failures else EXIT_SUCCESS
    return exit_code, summary
