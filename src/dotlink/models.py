from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


LINK_CREATED = "created"
LINK_REPLACED = "replaced"
LINK_BACKED_UP = "backed-up"
LINK_CORRECT = "correct"
LINK_IN_PLACE = "in-place"
LINK_MISSING_SOURCE = "missing-source"
LINK_FAILED = "failed"

TOOL_PRESENT = "present"
TOOL_INSTALLED = "installed"
TOOL_WOULD_INSTALL = "would-install"
TOOL_FAILED = "failed"

DIR_PRESENT = "present"
DIR_CREATED = "created"
DIR_FAILED = "failed"


@dataclass(slots=True)
class LinkResult:
    label: str
    source: Path
    target: Path
    outcome: str
    backup: Path | None = None
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.outcome in {LINK_CREATED, LINK_REPLACED, LINK_BACKED_UP}


@dataclass(slots=True)
class LinkStats:
    created: int = 0
    skipped: int = 0
    backed_up: int = 0
    failed: int = 0

    def absorb(self, result: LinkResult) -> None:
        if result.outcome == LINK_FAILED:
            self.failed += 1
        elif result.outcome in {LINK_CORRECT, LINK_IN_PLACE, LINK_MISSING_SOURCE}:
            self.skipped += 1
        else:
            self.created += 1
            if result.outcome == LINK_BACKED_UP:
                self.backed_up += 1


@dataclass(slots=True)
class ToolResult:
    name: str
    outcome: str
    attempts: int = 0
    error: str | None = None
    env: Mapping[str, str] | None = None


@dataclass(slots=True)
class ToolStats:
    present: int = 0
    installed: int = 0
    failed: int = 0

    def absorb(self, result: ToolResult) -> None:
        if result.outcome == TOOL_FAILED:
            self.failed += 1
        elif result.outcome == TOOL_PRESENT:
            self.present += 1
        else:
            self.installed += 1
