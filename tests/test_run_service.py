from pathlib import Path

import pytest

from dotlink.privileges import PreconditionError
from dotlink.run_service import (
    EXIT_INVALID_CONFIG,
    EXIT_PARTIAL_FAILURES,
    EXIT_PRECONDITION_FAILED,
    EXIT_SUCCESS,
    RunOptions,
    run_setup,
)
from dotlink.tools import ToolRunOptions


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _posix(path: Path) -> str:
    return str(path).replace("\\", "/")


def _allow() -> None:
    return None


def _deny() -> None:
    raise PreconditionError("not elevated")


def _config(tmp_path: Path, extra: str = "") -> Path:
    repo = tmp_path / "repo"
    home = tmp_path / "home"
    _write(repo / "profile.ps1", "profile")
    _write(repo / "theme.omp.json", "{}")
    config_file = tmp_path / "dotlink.yaml"
    config_file.write_text(
        f"""
repoRoot: {_posix(repo)}
directories:
  - {_posix(home / '.config')}
links:
  - label: profile
    source: profile.ps1
    target: {_posix(home / 'Documents' / 'profile.ps1')}
    required: true
  - label: theme
    source: theme.omp.json
    target: {_posix(home / '.config' / 'theme.omp.json')}
{extra}
""".strip(),
        encoding="utf-8",
    )
    return config_file


pytestmark = pytest.mark.usefixtures("requires_symlinks")


def test_run_setup_links_everything(tmp_path: Path) -> None:
    config_file = _config(tmp_path)

    exit_code, summary = run_setup(config_file, RunOptions(privilege_check=_allow))

    assert exit_code == EXIT_SUCCESS
    assert summary.links.created == 2
    assert summary.directories_created == 1
    assert (tmp_path / "home" / "Documents" / "profile.ps1").is_symlink()


def test_run_setup_second_run_changes_nothing(tmp_path: Path) -> None:
    config_file = _config(tmp_path)
    run_setup(config_file, RunOptions(privilege_check=_allow))

    exit_code, summary = run_setup(config_file, RunOptions(privilege_check=_allow))

    assert exit_code == EXIT_SUCCESS
    assert summary.links.created == 0
    assert summary.links.skipped == 2
    assert summary.directories_created == 0
    assert summary.tally() == (
        "links: created=0 skipped=2 backed_up=0 failed=0 | tools: present=0 installed=0 failed=0"
    )


def test_run_setup_counts_backups(tmp_path: Path) -> None:
    config_file = _config(tmp_path)
    _write(tmp_path / "home" / "Documents" / "profile.ps1", "X")

    exit_code, summary = run_setup(config_file, RunOptions(privilege_check=_allow))

    backups = list((tmp_path / "home" / "Documents").glob("profile.ps1.bak_*"))
    assert exit_code == EXIT_SUCCESS
    assert summary.links.backed_up == 1
    assert summary.links.created == 2
    assert len(backups) == 1
    assert backups[0].read_text(encoding="utf-8") == "X"


def test_run_setup_aborts_without_privilege_before_any_change(tmp_path: Path) -> None:
    config_file = _config(tmp_path)

    exit_code, summary = run_setup(config_file, RunOptions(privilege_check=_deny))

    assert exit_code == EXIT_PRECONDITION_FAILED
    assert summary.partial_failures is True
    assert not (tmp_path / "home").exists()


def test_run_setup_skips_privilege_check_when_not_required(tmp_path: Path) -> None:
    config_file = _config(tmp_path, extra="requireElevation: false")

    exit_code, _ = run_setup(config_file, RunOptions(privilege_check=_deny))

    assert exit_code == EXIT_SUCCESS


def test_run_setup_aborts_when_required_source_missing(tmp_path: Path) -> None:
    config_file = _config(tmp_path)
    (tmp_path / "repo" / "profile.ps1").unlink()

    exit_code, _ = run_setup(config_file, RunOptions(privilege_check=_allow))

    assert exit_code == EXIT_PRECONDITION_FAILED
    assert not (tmp_path / "home").exists()


def test_run_setup_skips_optional_missing_source(tmp_path: Path) -> None:
    config_file = _config(tmp_path)
    (tmp_path / "repo" / "theme.omp.json").unlink()

    exit_code, summary = run_setup(config_file, RunOptions(privilege_check=_allow))

    assert exit_code == EXIT_SUCCESS
    assert summary.links.created == 1
    assert summary.links.skipped == 1


def test_run_setup_dry_run_leaves_filesystem_alone(tmp_path: Path) -> None:
    config_file = _config(tmp_path)

    exit_code, summary = run_setup(config_file, RunOptions(dry_run=True, privilege_check=_deny))

    assert exit_code == EXIT_SUCCESS
    assert summary.links.created == 2
    assert not (tmp_path / "home").exists()


def test_run_setup_tool_failure_is_partial(tmp_path: Path) -> None:
    config_file = _config(
        tmp_path,
        extra="""
tools:
  - name: posh
    check: [check-posh]
    install: [winget, install, posh]
    retries: 2
""",
    )
    calls: list[str] = []

    def runner(argv, env, cwd) -> int:
        calls.append(argv[0])
        return 1

    options = RunOptions(
        privilege_check=_allow,
        tool_options=ToolRunOptions(runner=runner, sleep=lambda _: None),
    )
    exit_code, summary = run_setup(config_file, options)

    assert exit_code == EXIT_PARTIAL_FAILURES
    assert summary.tools.failed == 1
    assert summary.links.created == 2
    assert calls == ["check-posh", "winget", "winget"]


def test_run_setup_skip_flags(tmp_path: Path) -> None:
    config_file = _config(
        tmp_path,
        extra="""
tools:
  - name: posh
    check: [check-posh]
    install: [winget, install, posh]
""",
    )

    def runner(argv, env, cwd) -> int:
        raise AssertionError("tools must not run")

    options = RunOptions(
        skip_tools=True,
        skip_links=True,
        privilege_check=_deny,
        tool_options=ToolRunOptions(runner=runner),
    )
    exit_code, summary = run_setup(config_file, options)

    assert exit_code == EXIT_SUCCESS
    assert summary.links.created == 0
    assert (tmp_path / "home" / ".config").is_dir()


def test_run_setup_interactive_confirmation_per_component(tmp_path: Path) -> None:
    config_file = _config(tmp_path)
    asked: list[str] = []

    def confirm(component: str) -> bool:
        asked.append(component)
        return component == "links"

    exit_code, summary = run_setup(config_file, RunOptions(confirm=confirm, privilege_check=_allow))

    assert exit_code == EXIT_SUCCESS
    assert asked == ["directories", "links"]
    assert summary.directories_created == 0
    assert summary.links.created == 2


def test_run_setup_link_filter(tmp_path: Path) -> None:
    config_file = _config(tmp_path)

    exit_code, summary = run_setup(config_file, RunOptions(link_filter="theme", privilege_check=_allow))

    assert exit_code == EXIT_SUCCESS
    assert summary.links.created == 1
    assert not (tmp_path / "home" / "Documents").exists()


def test_run_setup_invalid_config(tmp_path: Path) -> None:
    config_file = tmp_path / "dotlink.yaml"
    config_file.write_text("links: nope", encoding="utf-8")

    exit_code, _ = run_setup(config_file, RunOptions(privilege_check=_allow))

    assert exit_code == EXIT_INVALID_CONFIG


def test_run_setup_clone_failure_aborts(tmp_path: Path) -> None:
    config_file = _config(
        tmp_path,
        extra="""
repository:
  url: https://example.com/dotfiles.git
""",
    )
    missing_root = tmp_path / "fresh"
    text = config_file.read_text(encoding="utf-8").replace(_posix(tmp_path / "repo"), _posix(missing_root))
    config_file.write_text(text, encoding="utf-8")

    options = RunOptions(
        privilege_check=_allow,
        tool_options=ToolRunOptions(runner=lambda argv, env, cwd: 128, sleep=lambda _: None),
    )
    exit_code, _ = run_setup(config_file, options)

    assert exit_code == EXIT_PRECONDITION_FAILED
    assert not (tmp_path / "home").exists()


def test_run_setup_later_tools_see_refreshed_path(tmp_path: Path) -> None:
    config_file = _config(
        tmp_path,
        extra="""
tools:
  - name: git
    check: [check-git]
    install: [winget, install, git]
  - name: posh
    check: [check-posh]
    install: [winget, install, posh]
""",
    )
    refreshed = {"PATH": "refreshed"}
    seen: list[tuple[str, object]] = []

    def runner(argv, env, cwd) -> int:
        seen.append((argv[0], env))
        if argv[0] == "check-git":
            return 0 if env == refreshed else 1
        return 0

    options = RunOptions(
        skip_links=True,
        privilege_check=_allow,
        tool_options=ToolRunOptions(runner=runner, sleep=lambda _: None, refresh_env=lambda: refreshed),
    )
    exit_code, summary = run_setup(config_file, options)

    assert exit_code == EXIT_SUCCESS
    assert summary.tools.installed == 1
    assert summary.tools.present == 1
    assert seen[-1] == ("check-posh", refreshed)
