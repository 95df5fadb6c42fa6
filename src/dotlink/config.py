from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any

import json
import yaml


DEFAULT_CONFIG_NAME = "dotlink.yaml"
DEFAULT_INSTALL_RETRIES = 3


@dataclass(slots=True)
class LinkEntry:
    source: Path
    target: Path
    label: str
    required: bool = False


@dataclass(slots=True)
class ToolEntry:
    name: str
    install: list[str]
    command: str | None = None
    check: list[str] | None = None
    retries: int = DEFAULT_INSTALL_RETRIES


@dataclass(slots=True)
class RepositoryConfig:
    url: str
    branch: str | None = None


@dataclass(slots=True)
class AppConfig:
    repo_root: Path
    links: list[LinkEntry] = field(default_factory=list)
    tools: list[ToolEntry] = field(default_factory=list)
    directories: list[Path] = field(default_factory=list)
    repository: RepositoryConfig | None = None
    require_elevation: bool = True


def expand_path(value: str, base: Path | None = None) -> Path:
    path = Path(os.path.expandvars(value)).expanduser()
    if base is not None and not path.is_absolute():
        path = base / path
    return path


def path_key(path: Path) -> str:
    """Absolute, normalized form used to compare two paths.

    Case is folded only where the platform folds it (Windows).
    """
    return os.path.normcase(os.path.abspath(path))


def _as_path(value: Any, field_name: str, base: Path | None = None) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string path")
    return expand_path(value.strip(), base)


def _as_bool(value: Any, field_name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ValueError(f"{field_name} must be a boolean")


def _as_optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    return value.strip() or None


def _as_argv(value: Any, field_name: str, required: bool) -> list[str] | None:
    if value is None:
        if required:
            raise ValueError(f"{field_name} must be a non-empty list of strings")
        return None
    if not isinstance(value, list) or not value or any(not isinstance(item, str) for item in value):
        raise ValueError(f"{field_name} must be a non-empty list of strings")
    return list(value)


def _as_list(value: Any, field_name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list")
    return value


def _load_raw_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ValueError(f"Config file does not exist: {config_path}")

    suffix = config_path.suffix.lower()
    text = config_path.read_text(encoding="utf-8")
    if suffix in {".yml", ".yaml"}:
        loaded = yaml.safe_load(text)
    elif suffix == ".json":
        loaded = json.loads(text)
    else:
        raise ValueError("Config file must be .yaml/.yml or .json")

    if not isinstance(loaded, dict):
        raise ValueError("Config root must be an object")
    return loaded


def _load_links(raw_links: list[Any], repo_root: Path) -> list[LinkEntry]:
    links: list[LinkEntry] = []
    targets: set[str] = set()

    for index, raw_link in enumerate(raw_links):
        if not isinstance(raw_link, dict):
            raise ValueError(f"links[{index}] must be an object")

        source = _as_path(raw_link.get("source"), f"links[{index}].source", base=repo_root)
        target = _as_path(raw_link.get("target"), f"links[{index}].target")

        key = path_key(target)
        if key in targets:
            raise ValueError(f"Duplicate link target: {target}")
        targets.add(key)

        label = _as_optional_str(raw_link.get("label"), f"links[{index}].label") or target.name
        links.append(
            LinkEntry(
                source=source,
                target=target,
                label=label,
                required=_as_bool(raw_link.get("required"), f"links[{index}].required", default=False),
            )
        )
    return links


def _load_tools(raw_tools: list[Any]) -> list[ToolEntry]:
    tools: list[ToolEntry] = []
    names: set[str] = set()

    for index, raw_tool in enumerate(raw_tools):
        if not isinstance(raw_tool, dict):
            raise ValueError(f"tools[{index}] must be an object")

        name = raw_tool.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"tools[{index}].name must be a non-empty string")
        if name in names:
            raise ValueError(f"Duplicate tool name: {name}")
        names.add(name)

        retries = raw_tool.get("retries", DEFAULT_INSTALL_RETRIES)
        if isinstance(retries, bool) or not isinstance(retries, int) or retries < 1:
            raise ValueError(f"tools[{index}].retries must be an integer >= 1")

        tools.append(
            ToolEntry(
                name=name,
                install=_as_argv(raw_tool.get("install"), f"tools[{index}].install", required=True) or [],
                command=_as_optional_str(raw_tool.get("command"), f"tools[{index}].command"),
                check=_as_argv(raw_tool.get("check"), f"tools[{index}].check", required=False),
                retries=retries,
            )
        )
    return tools


def load_config(config_path: Path) -> AppConfig:
    raw = _load_raw_config(config_path)
    config_dir = config_path.resolve().parent

    raw_root = raw.get("repoRoot")
    repo_root = _as_path(raw_root, "repoRoot", base=config_dir) if raw_root is not None else config_dir

    raw_links = _as_list(raw.get("links"), "links")
    raw_tools = _as_list(raw.get("tools"), "tools")
    raw_dirs = _as_list(raw.get("directories"), "directories")
    if not raw_links and not raw_tools and not raw_dirs:
        raise ValueError("Config must contain a non-empty 'links', 'tools' or 'directories' list")

    directories = [
        _as_path(raw_dir, f"directories[{index}]") for index, raw_dir in enumerate(raw_dirs)
    ]

    repository = None
    raw_repository = raw.get("repository")
    if raw_repository is not None:
        if not isinstance(raw_repository, dict):
            raise ValueError("repository must be an object")
        url = _as_optional_str(raw_repository.get("url"), "repository.url")
        if not url:
            raise ValueError("repository.url must be a non-empty string")
        repository = RepositoryConfig(
            url=url,
            branch=_as_optional_str(raw_repository.get("branch"), "repository.branch"),
        )

    return AppConfig(
        repo_root=repo_root,
        links=_load_links(raw_links, repo_root),
        tools=_load_tools(raw_tools),
        directories=directories,
        repository=repository,
        require_elevation=_as_bool(raw.get("requireElevation"), "requireElevation", default=True),
    )


def select_links(config: AppConfig, link_filter: str | None) -> list[LinkEntry]:
    if not link_filter:
        return config.links

    by_label = [entry for entry in config.links if entry.label == link_filter]
    if by_label:
        return by_label

    by_name = [
        entry
        for entry in config.links
        if entry.target.name == link_filter or entry.source.name == link_filter
    ]
    if len(by_name) > 1:
        raise ValueError(f"Link filter '{link_filter}' is ambiguous; use the link label")
    if not by_name:
        raise ValueError(f"No link matched filter '{link_filter}'")
    return by_name
