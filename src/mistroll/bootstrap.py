import logging
import os
import random
from typing import Optional

from dotenv import load_dotenv

from mistroll.application.services.event_bus import EventBus
from mistroll.application.services.roll_session import InMemorySessionStore
from mistroll.application.services.roll_workflow import RollWorkflowService
from mistroll.application.services.tag_consumption import ThemeImprovementTracker
from mistroll.domain.repositories import CharacterRepository, FellowshipRepository, SceneRepository
from mistroll.infrastructure.inmemory.atomic_persistence import create_inmemory_atomic_persistor
from mistroll.infrastructure.inmemory.inmemory_character_repo import InMemoryCharacterRepository
from mistroll.infrastructure.inmemory.inmemory_roll_repo import InMemoryRollRepository
from mistroll.infrastructure.inmemory.inmemory_scene_repo import (
    InMemoryFellowshipRepository,
    InMemorySceneRepository,
)
from mistroll.infrastructure.server_config import ConfiguredRoleNarratorPolicy, MemberRoles, ServerConfig


logger = logging.getLogger(__name__)

_ENV_LOADED = False


def load_environment() -> None:
    global _ENV_LOADED
    if not _ENV_LOADED:
        load_dotenv()
        _ENV_LOADED = True


def _build_roll_store(guild_id: str, character_repo: CharacterRepository):
    if os.getenv("MISTROLL_DATABASE_URL"):
        from mistroll.infrastructure.db.sql.atomic_persistence import create_sql_atomic_persistor
        from mistroll.infrastructure.db.sql.repos import SqlRollRepository

        roll_repo = SqlRollRepository(guild_id)
        return roll_repo, create_sql_atomic_persistor(roll_repo, character_repo)

    roll_repo = InMemoryRollRepository()
    return roll_repo, create_inmemory_atomic_persistor(roll_repo, character_repo)


def create_roll_workflow(
    guild_id: str,
    member_roles: MemberRoles,
    *,
    character_repo: Optional[CharacterRepository] = None,
    scene_repo: Optional[SceneRepository] = None,
    fellowship_repo: Optional[FellowshipRepository] = None,
    config: Optional[ServerConfig] = None,
    session_store: Optional[InMemorySessionStore] = None,
    event_bus: Optional[EventBus] = None,
    rng: Optional[random.Random] = None,
) -> RollWorkflowService:
    """Wire a roll workflow for one guild.

    Uses the SQL roll store when ``MISTROLL_DATABASE_URL`` is set, the
    in-memory one otherwise. Character, scene and fellowship stores default to
    empty in-memory stores.
    """
    load_environment()
    guild_id = str(guild_id)
    config = config or ServerConfig()
    character_repo = character_repo or InMemoryCharacterRepository()
    scene_repo = scene_repo or InMemorySceneRepository()
    fellowship_repo = fellowship_repo or InMemoryFellowshipRepository()
    event_bus = event_bus or EventBus()

    roll_repo, persistor = _build_roll_store(guild_id, character_repo)
    ThemeImprovementTracker(character_repo, event_bus).register()

    if not config.narrator_role_id(guild_id):
        logger.warning("No narrator role configured; rolls cannot be confirmed", extra={"guild_id": guild_id})

    return RollWorkflowService(
        guild_id=guild_id,
        roll_repo=roll_repo,
        character_repo=character_repo,
        scene_repo=scene_repo,
        fellowship_repo=fellowship_repo,
        narrator_policy=ConfiguredRoleNarratorPolicy(config, member_roles),
        session_store=session_store,
        event_bus=event_bus,
        persist_execution=persistor,
        rng=rng,
        page_size=config.page_size(guild_id),
    )
