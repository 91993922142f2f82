from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from dotenv import dotenv_values

from mistroll.domain.repositories import NarratorPolicy


logger = logging.getLogger(__name__)

NARRATOR_ROLE_SETTING = "MISTROLL_NARRATOR_ROLE_ID"
PAGE_SIZE_SETTING = "MISTROLL_PAGE_SIZE"
MAX_PAGE_SIZE = 25


class ServerConfig:
    """Per-guild settings layered over the process environment.

    Lookup order for a setting in guild ``G``: the ``.env.G`` file in
    ``config_dir``, then ``<NAME>_G`` in the environment, then ``<NAME>``.
    """

    def __init__(self, config_dir: Path | str | None = None, environ: Dict[str, str] | None = None) -> None:
        self.config_dir = Path(config_dir) if config_dir is not None else Path.cwd()
        self._environ = environ
        self._guild_cache: Dict[str, Dict[str, Optional[str]]] = {}

    @property
    def environ(self):
        return self._environ if self._environ is not None else os.environ

    def guild_values(self, guild_id: str) -> Dict[str, Optional[str]]:
        guild_id = str(guild_id or "")
        if not guild_id:
            return {}
        if guild_id not in self._guild_cache:
            env_file = self.config_dir / f".env.{guild_id}"
            values: Dict[str, Optional[str]] = {}
            if env_file.exists():
                values = dict(dotenv_values(env_file))
                logger.info("Loaded guild configuration", extra={"guild_id": guild_id, "path": str(env_file)})
            self._guild_cache[guild_id] = values
        return self._guild_cache[guild_id]

    def get(self, name: str, guild_id: str | None = None, default: Optional[str] = None) -> Optional[str]:
        if guild_id:
            value = self.guild_values(guild_id).get(name)
            if _present(value):
                return value.strip()
            value = self.environ.get(f"{name}_{guild_id}")
            if _present(value):
                return value.strip()
        value = self.environ.get(name)
        if _present(value):
            return value.strip()
        return default

    def narrator_role_id(self, guild_id: str) -> Optional[str]:
        return self.get(NARRATOR_ROLE_SETTING, guild_id)

    def page_size(self, guild_id: str | None = None) -> int:
        raw = self.get(PAGE_SIZE_SETTING, guild_id, str(MAX_PAGE_SIZE))
        try:
            size = int(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid page size", extra={"value": raw, "guild_id": guild_id})
            return MAX_PAGE_SIZE
        return max(1, min(size, MAX_PAGE_SIZE))

    def clear_cache(self) -> None:
        self._guild_cache.clear()


def _present(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


MemberRoles = Callable[[str, str], Iterable[str]]


class ConfiguredRoleNarratorPolicy(NarratorPolicy):
    """Narrators are the members holding the guild's configured role.

    ``member_roles(actor_id, guild_id)`` is supplied by the chat transport.
    """

    def __init__(self, config: ServerConfig, member_roles: MemberRoles) -> None:
        self.config = config
        self.member_roles = member_roles

    def is_configured(self, guild_id: str) -> bool:
        return self.config.narrator_role_id(guild_id) is not None

    def is_narrator(self, actor_id: str, guild_id: str) -> bool:
        role_id = self.config.narrator_role_id(guild_id)
        if role_id is None:
            return False
        return role_id in {str(role) for role in self.member_roles(actor_id, guild_id) or ()}
