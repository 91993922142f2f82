from __future__ import annotations

import logging
import random
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional, Sequence

from mistroll.application.dtos import FailureReason, WorkflowResult
from mistroll.application.services.event_bus import EventBus
from mistroll.application.services.execution_strategy import (
    ExecutionStrategy,
    StrategyPreconditionError,
    resolve_execution,
)
from mistroll.application.services.power_calculator import calculate_breakdown
from mistroll.application.services.roll_session import (
    DEFAULT_PAGE_SIZE,
    InMemorySessionStore,
    RollSession,
    SessionAction,
    SessionPurpose,
    TagSide,
    session_key,
)
from mistroll.application.services.tag_catalog import TagCatalog
from mistroll.application.services.tag_consumption import burn_operations
from mistroll.application.services.tag_resolver import TagResolver
from mistroll.domain.events import (
    InvalidTagsPurged,
    RollAmended,
    RollConfirmed,
    RollExecuted,
    RollSubmitted,
)
from mistroll.domain.models.roll import Roll, RollStatus
from mistroll.domain.models.tag_entity import TagEntity
from mistroll.domain.repositories import (
    CharacterRepository,
    FellowshipRepository,
    NarratorPolicy,
    RollRepository,
    SceneRepository,
)


logger = logging.getLogger(__name__)

ExecutionPersistor = Callable[[int, Mapping[str, Any], Sequence[Callable[[object], None]]], None]

SESSION_EXPIRED_MESSAGE = "This roll session has expired. Start the roll again."


class RollWorkflowService:
    """Drives rolls from draft to executed result for one guild.

    Every entry point returns a ``WorkflowResult``. Expected problems such as an
    expired session, a missing permission or a wrong status come back as
    failures; only collaborator store errors are raised.
    """

    def __init__(
        self,
        *,
        guild_id: str,
        roll_repo: RollRepository,
        character_repo: CharacterRepository,
        scene_repo: SceneRepository,
        fellowship_repo: FellowshipRepository,
        narrator_policy: NarratorPolicy,
        session_store: InMemorySessionStore | None = None,
        event_bus: EventBus | None = None,
        persist_execution: ExecutionPersistor | None = None,
        rng: random.Random | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.guild_id = str(guild_id)
        self.roll_repo = roll_repo
        self.character_repo = character_repo
        self.narrator_policy = narrator_policy
        self.sessions = session_store if session_store is not None else InMemorySessionStore()
        self.event_bus = event_bus or EventBus()
        self.persist_execution = persist_execution
        self.rng = rng or random.Random()
        self.page_size = page_size
        self.resolver = TagResolver(character_repo, scene_repo, fellowship_repo)
        self.catalog = TagCatalog(character_repo, scene_repo, fellowship_repo)

    # ------------------------------------------------------------------
    # session lifecycle

    def start_propose(self, actor_id: str, character_id: int, scene_id: str, description: str = "") -> WorkflowResult:
        if self.character_repo.get(actor_id, character_id) is None:
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Character {character_id} was not found.")
        session = RollSession(
            key=session_key(SessionPurpose.PROPOSE, creator_id=actor_id, scene_id=scene_id),
            purpose=SessionPurpose.PROPOSE,
            creator_id=actor_id,
            character_id=character_id,
            scene_id=str(scene_id),
            page_size=self.page_size,
        )
        session.set_description(description)
        self._load_options(session)
        return self._save_session(session)

    def start_reaction(
        self,
        actor_id: str,
        character_id: int,
        scene_id: str,
        reaction_to_roll_id: int,
        description: str = "",
    ) -> WorkflowResult:
        if self.character_repo.get(actor_id, character_id) is None:
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Character {character_id} was not found.")
        target = self.roll_repo.get(reaction_to_roll_id)
        if target is None:
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Roll #{reaction_to_roll_id} was not found.")
        if target.status != RollStatus.EXECUTED:
            return WorkflowResult.failure(
                FailureReason.INVALID_TRANSITION,
                f"Reactions can only answer executed rolls. Roll #{target.id} is {target.status.value}.",
                roll=target,
            )
        session = RollSession(
            key=session_key(SessionPurpose.REACTION, creator_id=actor_id, scene_id=scene_id),
            purpose=SessionPurpose.REACTION,
            creator_id=actor_id,
            character_id=character_id,
            scene_id=str(scene_id),
            is_reaction=True,
            reaction_to_roll_id=target.id,
            excluded_tags=target.all_tags,
            page_size=self.page_size,
        )
        session.set_description(description)
        self._load_options(session)
        return self._save_session(session)

    def start_amend(self, actor_id: str, roll_id: int) -> WorkflowResult:
        roll = self.roll_repo.get(roll_id)
        if roll is None:
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Roll #{roll_id} was not found.")
        if roll.creator_id != actor_id:
            return WorkflowResult.failure(
                FailureReason.PERMISSION_DENIED, "Only the player who proposed this roll can amend it.", roll=roll
            )
        if not roll.status.can_amend:
            return self._wrong_status(roll, "amended")
        session = RollSession.from_roll(roll, SessionPurpose.AMEND, page_size=self.page_size)
        session.excluded_tags = self._reaction_exclusions(roll)
        self._load_options(session)
        return self._save_session(session)

    def start_confirm(self, actor_id: str, roll_id: int) -> WorkflowResult:
        return self._open_confirm(actor_id, roll_id, acknowledged=False)

    def reconfirm(self, actor_id: str, roll_id: int) -> WorkflowResult:
        """Open a review of an already confirmed roll; the caller has acknowledged the warning."""
        return self._open_confirm(actor_id, roll_id, acknowledged=True)

    def _open_confirm(self, actor_id: str, roll_id: int, *, acknowledged: bool) -> WorkflowResult:
        denied = self._require_narrator(actor_id)
        if denied is not None:
            return denied
        roll = self.roll_repo.get(roll_id)
        if roll is None:
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Roll #{roll_id} was not found.")
        if not roll.status.can_confirm:
            return self._wrong_status(roll, "confirmed")
        if roll.status == RollStatus.CONFIRMED and not acknowledged:
            return WorkflowResult.failure(
                FailureReason.RECONFIRM_REQUIRED,
                f"Roll #{roll.id} is already confirmed. Confirm anyway to review it again.",
                roll=roll,
            )
        session = RollSession.from_roll(roll, SessionPurpose.CONFIRM, page_size=self.page_size)
        session.excluded_tags = self._reaction_exclusions(roll)
        session.reconfirm_acknowledged = acknowledged
        self._load_options(session)
        return self._save_session(session)

    def get_session(self, key: str) -> WorkflowResult:
        session = self.sessions.get(key)
        if session is None:
            return WorkflowResult.failure(FailureReason.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE)
        return WorkflowResult.success(session=session)

    def end_session(self, actor_id: str, key: str) -> WorkflowResult:
        session = self.sessions.get(key)
        if session is None:
            return WorkflowResult.failure(FailureReason.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE)
        denied = self._check_editor(session, actor_id)
        if denied is not None:
            return denied
        if not session.can(SessionAction.CANCEL):
            return WorkflowResult.failure(FailureReason.INVALID_TRANSITION, "This session cannot be cancelled.")
        self.sessions.delete(key)
        logger.info("Roll session cancelled", extra={"session_key": key, "actor_id": actor_id})
        return WorkflowResult.success(session=session, message="Roll cancelled.")

    # ------------------------------------------------------------------
    # session edits

    def mutate_session(self, actor_id: str, key: str, mutation: Callable[[RollSession], Any]) -> WorkflowResult:
        """Apply ``mutation`` to the stored session and write it back once."""
        session = self.sessions.get(key)
        if session is None:
            return WorkflowResult.failure(FailureReason.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE)
        denied = self._check_editor(session, actor_id)
        if denied is not None:
            return denied
        try:
            mutation(session)
        except ValueError as exc:
            return WorkflowResult.failure(FailureReason.INVALID_INPUT, str(exc), session=session)
        return self._save_session(session)

    def select_tags(self, actor_id: str, key: str, side: TagSide, selected: Iterable[TagEntity]) -> WorkflowResult:
        chosen = list(selected)
        return self.mutate_session(actor_id, key, lambda session: session.select_page(side, chosen))

    def change_page(self, actor_id: str, key: str, side: TagSide, page: int) -> WorkflowResult:
        return self.mutate_session(actor_id, key, lambda session: session.change_page(side, page))

    def burn_tag(self, actor_id: str, key: str, entity: TagEntity | None) -> WorkflowResult:
        applied: List[bool] = []
        result = self.mutate_session(
            actor_id, key, lambda session: applied.append(session.burn(entity, self.resolver.is_burnable))
        )
        if result.ok and applied and not applied[0]:
            result.message = "That tag cannot be burned. Only a selected, unburned character tag can be burned."
        return result

    def add_help_from_character(
        self,
        actor_id: str,
        key: str,
        helper_character_id: int,
        entities: Iterable[TagEntity],
    ) -> WorkflowResult:
        if self.character_repo.get_by_id(helper_character_id) is None:
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Character {helper_character_id} was not found.")
        chosen = list(entities)

        def _assist(session: RollSession) -> None:
            offered = {
                option.entity
                for option in self.catalog.character_help_options(helper_character_id, exclude=session.excluded_tags)
            }
            refused = sorted(entity.key for entity in chosen if entity not in offered)
            if refused:
                raise ValueError(
                    f"Character {helper_character_id} cannot help with: {', '.join(refused)}. "
                    "Only their own unburned, non-weakness tags can be offered."
                )
            session.add_help_from_character(helper_character_id, chosen)

        return self.mutate_session(actor_id, key, _assist)

    def set_might(self, actor_id: str, key: str, value: int) -> WorkflowResult:
        return self.mutate_session(actor_id, key, lambda session: session.set_might(value))

    def set_justification(self, actor_id: str, key: str, notes: str | None) -> WorkflowResult:
        return self.mutate_session(actor_id, key, lambda session: session.set_justification(notes))

    def set_narration_link(self, actor_id: str, key: str, link: str | None) -> WorkflowResult:
        return self.mutate_session(actor_id, key, lambda session: session.set_narration_link(link))

    def calculate_power(self, key: str) -> WorkflowResult:
        session = self.sessions.get(key)
        if session is None:
            return WorkflowResult.failure(FailureReason.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE)
        return WorkflowResult.success(session=session, breakdown=self._breakdown(session))

    # ------------------------------------------------------------------
    # transitions

    def submit(self, actor_id: str, key: str) -> WorkflowResult:
        session = self.sessions.get(key)
        if session is None:
            return WorkflowResult.failure(FailureReason.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE)
        if session.purpose == SessionPurpose.AMEND:
            return self.amend(actor_id, key)
        if not session.can(SessionAction.SUBMIT):
            return WorkflowResult.failure(FailureReason.INVALID_TRANSITION, "This session cannot be submitted.")
        if session.creator_id != actor_id:
            return WorkflowResult.failure(FailureReason.PERMISSION_DENIED, "Only the roll's creator can submit it.")

        if session.is_reaction:
            target = self.roll_repo.get(session.reaction_to_roll_id)
            if target is None or target.status != RollStatus.EXECUTED:
                return WorkflowResult.failure(
                    FailureReason.NOT_FOUND,
                    f"Roll #{session.reaction_to_roll_id} is no longer available to react to.",
                    session=session,
                )

        purged = self._purge_session(session)
        draft = Roll(
            id=None,
            creator_id=session.creator_id,
            character_id=session.character_id,
            scene_id=session.scene_id,
            is_reaction=session.is_reaction,
            reaction_to_roll_id=session.reaction_to_roll_id,
            **session.roll_fields(),
        )
        with self._store_errors("submit", actor_id=actor_id, session_key=key):
            roll_id = self.roll_repo.create(draft)
            roll = self.roll_repo.get(roll_id)
        self.sessions.delete(key)
        logger.info(
            "Roll proposed",
            extra={"roll_id": roll_id, "actor_id": actor_id, "guild_id": self.guild_id, "is_reaction": session.is_reaction},
        )
        self.event_bus.publish(
            RollSubmitted(
                roll_id=roll_id,
                creator_id=session.creator_id,
                scene_id=session.scene_id,
                is_reaction=session.is_reaction,
                reaction_to_roll_id=session.reaction_to_roll_id,
            )
        )
        return WorkflowResult.success(roll=roll, purged_count=purged, message=f"Roll #{roll_id} proposed.")

    def amend(self, actor_id: str, key: str) -> WorkflowResult:
        session = self.sessions.get(key)
        if session is None:
            return WorkflowResult.failure(FailureReason.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE)
        if session.purpose != SessionPurpose.AMEND:
            return WorkflowResult.failure(FailureReason.INVALID_TRANSITION, "This session is not amending a roll.")
        if session.creator_id != actor_id:
            return WorkflowResult.failure(FailureReason.PERMISSION_DENIED, "Only the roll's creator can amend it.")
        roll = self.roll_repo.get(session.roll_id)
        if roll is None:
            self.sessions.delete(key)
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Roll #{session.roll_id} was not found.")
        if not roll.status.can_amend:
            self.sessions.delete(key)
            return self._wrong_status(roll, "amended")

        purged = self._purge_session(session)
        changes = dict(session.roll_fields(), status=RollStatus.PROPOSED, confirmed_by=None)
        with self._store_errors("amend", actor_id=actor_id, roll_id=roll.id):
            updated = self.roll_repo.update(roll.id, changes)
        self.sessions.delete(key)
        logger.info(
            "Roll amended",
            extra={"roll_id": roll.id, "actor_id": actor_id, "previous_status": roll.status.value},
        )
        self.event_bus.publish(RollAmended(roll_id=roll.id, actor_id=actor_id, previous_status=roll.status.value))
        return WorkflowResult.success(roll=updated, purged_count=purged, message=f"Roll #{roll.id} amended.")

    def confirm(self, actor_id: str, key: str) -> WorkflowResult:
        session = self.sessions.get(key)
        if session is None:
            return WorkflowResult.failure(FailureReason.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE)
        if not session.can(SessionAction.CONFIRM):
            return WorkflowResult.failure(FailureReason.INVALID_TRANSITION, "This session cannot confirm a roll.")
        denied = self._require_narrator(actor_id)
        if denied is not None:
            return denied
        roll = self.roll_repo.get(session.roll_id)
        if roll is None:
            self.sessions.delete(key)
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Roll #{session.roll_id} was not found.")
        if not roll.status.can_confirm:
            self.sessions.delete(key)
            return self._wrong_status(roll, "confirmed")
        reconfirmed = roll.status == RollStatus.CONFIRMED
        if reconfirmed and not session.reconfirm_acknowledged:
            return WorkflowResult.failure(
                FailureReason.RECONFIRM_REQUIRED,
                f"Roll #{roll.id} was confirmed while you were reviewing it. Confirm anyway to keep your changes.",
                roll=roll,
                session=session,
            )
        if session.original_updated_at is not None and roll.updated_at != session.original_updated_at:
            self.sessions.delete(key)
            return WorkflowResult.failure(
                FailureReason.RECONFIRM_REQUIRED,
                f"Roll #{roll.id} was changed while you were reviewing it. Open the review again to see the changes.",
                roll=roll,
            )

        # update() replaces every tag set with the purged session values.
        purged = self._purge_session(session)
        changes = dict(session.roll_fields(), status=RollStatus.CONFIRMED, confirmed_by=actor_id)
        with self._store_errors("confirm", actor_id=actor_id, roll_id=roll.id):
            updated = self.roll_repo.update(roll.id, changes)
        self.sessions.delete(key)
        logger.info(
            "Roll confirmed",
            extra={"roll_id": roll.id, "actor_id": actor_id, "reconfirmed": reconfirmed, "purged": purged},
        )
        self.event_bus.publish(RollConfirmed(roll_id=roll.id, confirmed_by=actor_id, reconfirmed=reconfirmed))
        return WorkflowResult.success(roll=updated, purged_count=purged, message=f"Roll #{roll.id} confirmed.")

    def execute(self, actor_id: str, roll_id: int, strategy: ExecutionStrategy | str | None = None) -> WorkflowResult:
        try:
            chosen = ExecutionStrategy.parse(strategy)
        except ValueError as exc:
            return WorkflowResult.failure(FailureReason.INVALID_INPUT, str(exc))
        roll = self.roll_repo.get(roll_id)
        if roll is None:
            return WorkflowResult.failure(FailureReason.NOT_FOUND, f"Roll #{roll_id} was not found.")
        if roll.creator_id != actor_id:
            return WorkflowResult.failure(
                FailureReason.PERMISSION_DENIED, "Only the player who proposed this roll can execute it.", roll=roll
            )
        if not roll.status.can_execute:
            return self._wrong_status(roll, "executed")

        with self._store_errors("execute", actor_id=actor_id, roll_id=roll_id):
            purged = self._purge_roll(roll_id, "execute")
            roll = self.roll_repo.get(roll_id)
        breakdown = self._breakdown(roll)
        try:
            report = resolve_execution(breakdown.total, chosen, is_reaction=roll.is_reaction, rng=self.rng)
        except StrategyPreconditionError as exc:
            return WorkflowResult.failure(FailureReason.STRATEGY_PRECONDITION, str(exc), roll=roll, purged_count=purged)

        operations = burn_operations(roll, self.character_repo)
        with self._store_errors("execute", actor_id=actor_id, roll_id=roll_id):
            self._persist_executed(roll_id, operations)
            executed = self.roll_repo.get(roll_id)
        report = _with_consumed(report, roll)
        logger.info(
            "Roll executed",
            extra={
                "roll_id": roll_id,
                "actor_id": actor_id,
                "power": report.power,
                "total": report.total,
                "outcome": report.outcome,
                "strategy": report.strategy,
            },
        )
        self.event_bus.publish(
            RollExecuted(
                roll_id=roll_id,
                creator_id=roll.creator_id,
                character_id=roll.character_id,
                power=report.power,
                total=report.total,
                outcome=report.outcome,
                strategy=report.strategy,
                hinder_tags=tuple(sorted(roll.hinder_tags, key=lambda entity: entity.key)),
            )
        )
        result = WorkflowResult.success(roll=executed, purged_count=purged, execution=report, breakdown=breakdown)
        result.message = f"Roll #{roll_id}: {report.total} ({report.outcome})"
        return result

    # ------------------------------------------------------------------
    # queries

    def list_rolls_by_scene(self, scene_id: str) -> List[Roll]:
        return self.roll_repo.list_by_scene(scene_id)

    def list_rolls_by_status(self, status: RollStatus | str) -> List[Roll]:
        return self.roll_repo.list_by_status(RollStatus(status))

    # ------------------------------------------------------------------
    # helpers

    def _require_narrator(self, actor_id: str) -> Optional[WorkflowResult]:
        if not self.narrator_policy.is_configured(self.guild_id):
            return WorkflowResult.failure(
                FailureReason.PERMISSION_DENIED, "No narrator role is configured for this server."
            )
        if not self.narrator_policy.is_narrator(actor_id, self.guild_id):
            return WorkflowResult.failure(FailureReason.PERMISSION_DENIED, "Only a narrator can confirm rolls.")
        return None

    def _check_editor(self, session: RollSession, actor_id: str) -> Optional[WorkflowResult]:
        if session.purpose == SessionPurpose.CONFIRM:
            return self._require_narrator(actor_id)
        if session.creator_id != actor_id:
            return WorkflowResult.failure(
                FailureReason.PERMISSION_DENIED, "Only the player who started this roll can edit it."
            )
        return None

    @staticmethod
    def _wrong_status(roll: Roll, verb: str) -> WorkflowResult:
        return WorkflowResult.failure(
            FailureReason.INVALID_TRANSITION,
            f"Roll #{roll.id} cannot be {verb}. Current status: {roll.status.value}.",
            roll=roll,
        )

    def _reaction_exclusions(self, roll: Roll) -> frozenset:
        if not roll.is_reaction or roll.reaction_to_roll_id is None:
            return frozenset()
        target = self.roll_repo.get(roll.reaction_to_roll_id)
        return target.all_tags if target is not None else frozenset()

    def _load_options(self, session: RollSession) -> None:
        exclude = session.excluded_tags
        help_options = self.catalog.help_options(session.character_id, session.scene_id, exclude=exclude)
        hinder_options = self.catalog.hinder_options(session.character_id, session.scene_id, exclude=exclude)
        session.set_options(TagSide.HELP, [option.entity for option in help_options])
        session.set_options(TagSide.HINDER, [option.entity for option in hinder_options])

    def _save_session(self, session: RollSession) -> WorkflowResult:
        purged = self._purge_session(session)
        self.sessions.put(session)
        return WorkflowResult.success(session=session, purged_count=purged, breakdown=self._breakdown(session))

    def _purge_session(self, session: RollSession) -> int:
        _, invalid = self.resolver.partition_valid(session.all_tags)
        removed = session.drop_tags(invalid)
        if removed:
            self._announce_purge(session.roll_id, removed, f"session:{session.purpose.value}")
        return removed

    def _purge_roll(self, roll_id: int, context: str) -> int:
        removed = self.roll_repo.delete_invalid_tags(roll_id, self.resolver.is_valid)
        if removed:
            self._announce_purge(roll_id, removed, context)
        return removed

    def _announce_purge(self, roll_id: Optional[int], removed: int, context: str) -> None:
        logger.info(
            "Removed tags whose source no longer exists",
            extra={"roll_id": roll_id, "removed": removed, "context": context},
        )
        self.event_bus.publish(InvalidTagsPurged(roll_id=roll_id, removed=removed, context=context))

    def _breakdown(self, draft):
        return calculate_breakdown(
            draft.help_tags,
            draft.hinder_tags,
            draft.burned_tags,
            draft.might_modifier,
            self.resolver.resolve,
        )

    def _persist_executed(self, roll_id: int, operations: Sequence[Callable[[object], None]]) -> None:
        changes = {"status": RollStatus.EXECUTED}
        if self.persist_execution is not None:
            self.persist_execution(roll_id, changes, operations)
            return
        self.roll_repo.update(roll_id, changes)
        for operation in operations:
            operation(None)

    @contextmanager
    def _store_errors(self, transition: str, **context: Any) -> Iterator[None]:
        try:
            yield
        except Exception:
            logger.exception(
                "Roll store failed during transition",
                extra={"transition": transition, "guild_id": self.guild_id, **context},
            )
            raise


def _with_consumed(report, roll: Roll):
    if not roll.burned_tags:
        return report
    return replace(report, consumed_tags=tuple(sorted(entity.key for entity in roll.burned_tags)))
