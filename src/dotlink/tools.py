from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import os
from pathlib import Path
import shutil
import subprocess
import sys
import time
from typing import Callable, Mapping

from dotlink.config import RepositoryConfig, ToolEntry
from dotlink.models import (
    DIR_CREATED,
    DIR_FAILED,
    DIR_PRESENT,
    TOOL_FAILED,
    TOOL_INSTALLED,
    TOOL_PRESENT,
    TOOL_WOULD_INSTALL,
    ToolResult,
)


log = logging.getLogger("dotlink.tools")

MACHINE_ENVIRONMENT_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
USER_ENVIRONMENT_KEY = "Environment"

Runner = Callable[[list[str], Mapping[str, str] | None, Path | None], int]


def run_command(argv: list[str], env: Mapping[str, str] | None = None, cwd: Path | None = None) -> int:
    completed = subprocess.run(
        argv,
        env=dict(env) if env is not None else None,
        cwd=str(cwd) if cwd is not None else None,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        check=False,
    )
    if completed.returncode != 0 and completed.stderr:
        log.debug("%s: %s", argv[0], completed.stderr.decode(errors="replace").strip())
    return completed.returncode


def _registry_path(root: int, key_name: str) -> str:
    import winreg

    try:
        with winreg.OpenKey(root, key_name) as key:
            value, _ = winreg.QueryValueEx(key, "Path")
    except OSError:
        return ""
    return os.path.expandvars(str(value))


def refresh_path_env() -> dict[str, str]:
    """Current environment with PATH re-read from where installers record it.

    Package managers on Windows update the machine and user PATH in the
    registry, which the running process never sees.
    """
    env = dict(os.environ)
    if sys.platform != "win32":
        return env

    import winreg

    parts = [
        _registry_path(winreg.HKEY_LOCAL_MACHINE, MACHINE_ENVIRONMENT_KEY),
        _registry_path(winreg.HKEY_CURRENT_USER, USER_ENVIRONMENT_KEY),
    ]
    entries: list[str] = []
    for part in parts + [env.get("PATH", "")]:
        for entry in part.split(os.pathsep):
            if entry and entry not in entries:
                entries.append(entry)
    env["PATH"] = os.pathsep.join(entries)
    return env


@dataclass(slots=True)
class ToolRunOptions:
    dry_run: bool = False
    retry_delay: float = 2.0
    env: Mapping[str, str] | None = None
    cwd: Path | None = None
    runner: Runner = field(default=run_command)
    sleep: Callable[[float], None] = field(default=time.sleep)
    refresh_env: Callable[[], Mapping[str, str]] = field(default=refresh_path_env)


def _search_path(options: ToolRunOptions) -> str | None:
    if options.env is None:
        return None
    return options.env.get("PATH")


def is_tool_present(tool: ToolEntry, options: ToolRunOptions) -> bool:
    if tool.check:
        try:
            return options.runner(tool.check, options.env, options.cwd) == 0
        except OSError:
            return False
    return shutil.which(tool.command or tool.name, path=_search_path(options)) is not None


def run_with_retries(argv: list[str], attempts: int, options: ToolRunOptions) -> tuple[bool, int, str | None]:
    """Run ``argv`` until it exits zero, at most ``attempts`` times."""
    error: str | None = None
    for attempt in range(1, attempts + 1):
        try:
            returncode = options.runner(argv, options.env, options.cwd)
        except OSError as exc:
            return False, attempt, f"{argv[0]}: {exc}"
        if returncode == 0:
            return True, attempt, None
        error = f"{' '.join(argv)} exited with status {returncode}"
        log.debug("Attempt %s/%s failed: %s", attempt, attempts, error)
        if attempt < attempts:
            options.sleep(options.retry_delay)
    return False, attempts, error


def ensure_tool(tool: ToolEntry, options: ToolRunOptions) -> ToolResult:
    if is_tool_present(tool, options):
        return ToolResult(name=tool.name, outcome=TOOL_PRESENT)

    if options.dry_run:
        return ToolResult(name=tool.name, outcome=TOOL_WOULD_INSTALL)

    ok, attempts, error = run_with_retries(tool.install, tool.retries, options)
    if not ok:
        return ToolResult(name=tool.name, outcome=TOOL_FAILED, attempts=attempts, error=error)

    refreshed = replace(options, env=options.refresh_env())
    if not is_tool_present(tool, refreshed):
        return ToolResult(
            name=tool.name,
            outcome=TOOL_FAILED,
            attempts=attempts,
            error="install command succeeded but the tool is still not found",
            env=refreshed.env,
        )
    return ToolResult(name=tool.name, outcome=TOOL_INSTALLED, attempts=attempts, env=refreshed.env)


def ensure_directory(path: Path, dry_run: bool = False) -> tuple[str, str | None]:
    if path.is_dir():
        return DIR_PRESENT, None
    if dry_run:
        return DIR_CREATED, None
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        return DIR_FAILED, str(exc)
    return DIR_CREATED, None


def clone_command(repository: RepositoryConfig, repo_root: Path) -> list[str]:
    argv = ["git", "clone"]
    if repository.branch:
        argv.extend(["--branch", repository.branch])
    argv.extend([repository.url, str(repo_root)])
    return argv


def ensure_repository(
    repo_root: Path,
    repository: RepositoryConfig,
    options: ToolRunOptions,
    attempts: int = 3,
) -> tuple[str, str | None]:
    if repo_root.exists():
        return TOOL_PRESENT, None
    if options.dry_run:
        return TOOL_WOULD_INSTALL, None

    repo_root.parent.mkdir(parents=True, exist_ok=True)
    argv = clone_command(repository, repo_root)
    ok, _, error = run_with_retries(argv, attempts, options)
    if not ok:
        return TOOL_FAILED, error
    return TOOL_INSTALLED, None
