from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


STATUS_NAME_PATTERN = re.compile(r"^\S*[^\s-]\S*-(\d+)$")
_STATUS_SUFFIX = re.compile(r"-(\d+)$")


class TagKind(str, Enum):
    TAG = "tag"
    STATUS = "status"
    WEAKNESS = "weakness"


@dataclass(frozen=True)
class TagData:
    """Raw lookup result handed back by a collaborator store."""

    name: str
    kind: TagKind
    is_burned: bool = False


@dataclass(frozen=True)
class ResolvedTag:
    name: str
    kind: TagKind
    burnable: bool = False

    @property
    def is_status(self) -> bool:
        return self.kind == TagKind.STATUS

    @property
    def status_value(self) -> int:
        return status_value(self.name)


def looks_like_status(name: str | None) -> bool:
    """True for names written as ``<text>-<power>``, e.g. ``time-passes-3``."""
    trimmed = str(name or "").strip()
    return bool(STATUS_NAME_PATTERN.match(trimmed))


def status_value(name: str | None) -> int:
    match = _STATUS_SUFFIX.search(str(name or "").strip())
    return int(match.group(1)) if match else 1


def status_display_name(status: str, power_levels) -> str:
    """Render a status with its highest ticked power level, ``shaken`` + {1, 3} -> ``shaken-3``."""
    levels = [int(level) for level in power_levels or () if int(level) > 0]
    if not levels:
        return status
    return f"{status}-{max(levels)}"
