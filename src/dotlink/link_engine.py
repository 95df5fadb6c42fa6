from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import os
from pathlib import Path
from typing import Callable

from dotlink.config import LinkEntry, path_key
from dotlink.models import (
    LINK_BACKED_UP,
    LINK_CORRECT,
    LINK_CREATED,
    LINK_FAILED,
    LINK_IN_PLACE,
    LINK_MISSING_SOURCE,
    LINK_REPLACED,
    LinkResult,
)


BACKUP_MARKER = ".bak_"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


@dataclass(slots=True)
class LinkRunOptions:
    dry_run: bool = False
    clock: Callable[[], datetime] = field(default=datetime.now)


def backup_path_for(target: Path, moment: datetime) -> Path:
    base = target.with_name(f"{target.name}{BACKUP_MARKER}{moment.strftime(BACKUP_TIMESTAMP_FORMAT)}")
    candidate = base
    counter = 1
    while candidate.exists() or candidate.is_symlink():
        candidate = base.with_name(f"{base.name}_{counter}")
        counter += 1
    return candidate


def points_to(target: Path, source: Path) -> bool:
    """True when ``target`` is a symbolic link that resolves to ``source``."""
    if not target.is_symlink():
        return False
    try:
        destination = Path(os.readlink(target))
    except OSError:
        return False
    if not destination.is_absolute():
        destination = target.parent / destination
    if path_key(destination) == path_key(source):
        return True
    return path_key(Path(os.path.realpath(target))) == path_key(Path(os.path.realpath(source)))


def same_location(source: Path, target: Path) -> bool:
    """True when ``target`` names the source itself once every link above it is followed."""
    resolved_target = Path(os.path.realpath(target.parent)) / target.name
    return path_key(Path(os.path.realpath(source))) == path_key(resolved_target)


def _remove_link(target: Path) -> None:
    try:
        target.unlink()
    except (IsADirectoryError, PermissionError):
        # Windows directory links only go away through rmdir.
        os.rmdir(target)


def _create_link(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.symlink_to(source, target_is_directory=source.is_dir())


def link_state(entry: LinkEntry) -> str:
    """Classify a link without changing anything: ok, missing, conflict, stale-link or no-source."""
    if not entry.source.exists():
        return "no-source"
    if same_location(entry.source, entry.target) or points_to(entry.target, entry.source):
        return "ok"
    if entry.target.is_symlink():
        return "stale-link"
    if entry.target.exists():
        return "conflict"
    return "missing"


def sync_link(entry: LinkEntry, options: LinkRunOptions) -> LinkResult:
    source = entry.source
    target = entry.target
    result = LinkResult(label=entry.label, source=source, target=target, outcome=LINK_CREATED)

    if not source.exists():
        result.outcome = LINK_MISSING_SOURCE
        return result

    if same_location(source, target):
        result.outcome = LINK_IN_PLACE
        return result

    if points_to(target, source):
        result.outcome = LINK_CORRECT
        return result

    try:
        if target.is_symlink():
            result.outcome = LINK_REPLACED
            if not options.dry_run:
                _remove_link(target)
        elif target.exists():
            result.outcome = LINK_BACKED_UP
            result.backup = backup_path_for(target, options.clock())
            if not options.dry_run:
                target.rename(result.backup)

        if not options.dry_run:
            _create_link(source, target)
    except OSError as exc:
        result.outcome = LINK_FAILED
        result.error = str(exc)

    return result
