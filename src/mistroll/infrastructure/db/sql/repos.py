from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import bindparam, text

from mistroll.domain.models.roll import Roll, RollStatus, roll_tag_rows, utc_now
from mistroll.domain.models.tag_entity import TagEntity
from mistroll.domain.repositories import RollRepository
from .connection import SessionLocal


_ROLL_COLUMNS = (
    "id, creator_id, character_id, scene_id, description, narration_link, justification_notes, "
    "might_modifier, status, confirmed_by, is_reaction, reaction_to_roll_id, created_at, updated_at"
)


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_timestamp(raw) -> datetime:
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(str(raw))


def _row_to_roll(row, tag_rows) -> Roll:
    help_tags = set()
    hinder_tags = set()
    burned = set()
    sources: Dict[TagEntity, Any] = {}
    for tag in tag_rows:
        entity = TagEntity.from_key(f"{tag.parent_type}:{tag.parent_id}", tag.character_id)
        if tag.tag_type == "hinder":
            hinder_tags.add(entity)
            continue
        help_tags.add(entity)
        if tag.is_burned:
            burned.add(entity)
        if tag.help_from_character_id is not None:
            sources[entity] = tag.help_from_character_id
    return Roll(
        id=int(row.id),
        creator_id=str(row.creator_id),
        character_id=row.character_id,
        scene_id=str(row.scene_id),
        description=row.description or "",
        narration_link=row.narration_link,
        justification_notes=row.justification_notes,
        might_modifier=int(row.might_modifier or 0),
        status=RollStatus(row.status),
        confirmed_by=row.confirmed_by,
        help_tags=help_tags,
        hinder_tags=hinder_tags,
        burned_tags=burned,
        help_source_character=sources,
        is_reaction=bool(row.is_reaction),
        reaction_to_roll_id=row.reaction_to_roll_id,
        created_at=_parse_timestamp(row.created_at),
        updated_at=_parse_timestamp(row.updated_at),
    )


def _roll_params(guild_id: str, roll: Roll) -> Dict[str, Any]:
    return {
        "gid": guild_id,
        "id": roll.id,
        "creator_id": roll.creator_id,
        "character_id": roll.character_id,
        "scene_id": roll.scene_id,
        "description": roll.description,
        "narration_link": roll.narration_link,
        "justification_notes": roll.justification_notes,
        "might_modifier": roll.might_modifier,
        "status": roll.status.value,
        "confirmed_by": roll.confirmed_by,
        "is_reaction": 1 if roll.is_reaction else 0,
        "reaction_to_roll_id": roll.reaction_to_roll_id,
        "created_at": _timestamp(roll.created_at),
        "updated_at": _timestamp(roll.updated_at),
    }


class SqlRollRepository(RollRepository):
    """Roll store scoped to one guild; ids are allocated per guild."""

    def __init__(self, guild_id: str, session_factory=None) -> None:
        self.guild_id = str(guild_id)
        self._session_factory = session_factory

    @property
    def session_factory(self):
        return self._session_factory or SessionLocal

    def create(self, roll: Roll) -> int:
        with self.session_factory.begin() as session:
            next_id = session.execute(
                text("SELECT COALESCE(MAX(id), 0) + 1 AS next_id FROM rolls WHERE guild_id = :gid"),
                {"gid": self.guild_id},
            ).scalar_one()
            now = utc_now()
            stored = replace(roll, id=int(next_id), created_at=now, updated_at=now)
            session.execute(
                text(
                    f"""
                    INSERT INTO rolls (guild_id, {_ROLL_COLUMNS})
                    VALUES (:gid, :id, :creator_id, :character_id, :scene_id, :description, :narration_link,
                            :justification_notes, :might_modifier, :status, :confirmed_by, :is_reaction,
                            :reaction_to_roll_id, :created_at, :updated_at)
                    """
                ),
                _roll_params(self.guild_id, stored),
            )
            self._write_tags(session, stored)
        return stored.id

    def get(self, roll_id: int) -> Optional[Roll]:
        with self.session_factory() as session:
            return self._load(session, roll_id)

    def update(self, roll_id: int, changes: Mapping[str, Any]) -> Roll:
        with self.session_factory.begin() as session:
            return self.update_in_session(session, roll_id, changes)

    def update_in_session(self, session, roll_id: int, changes: Mapping[str, Any]) -> Roll:
        """Apply ``changes`` using a caller-owned transaction."""
        roll = self._load(session, roll_id)
        if roll is None:
            raise KeyError(f"Unknown roll: {roll_id}")
        updated = roll.with_changes(changes)
        self._write(session, updated)
        return updated

    def delete_invalid_tags(self, roll_id: int, is_valid: Callable[[TagEntity], bool]) -> int:
        with self.session_factory.begin() as session:
            roll = self._load(session, roll_id)
            if roll is None:
                raise KeyError(f"Unknown roll: {roll_id}")
            invalid = [entity for entity in roll.all_tags if not is_valid(entity)]
            if invalid:
                pruned = roll.without_tags(invalid)
                self._write(session, replace(pruned, updated_at=utc_now()))
        return len(invalid)

    def list_by_scene(self, scene_id: str) -> List[Roll]:
        return self._list("scene_id = :value", str(scene_id))

    def list_by_status(self, status: RollStatus) -> List[Roll]:
        return self._list("status = :value", RollStatus(status).value)

    def delete(self, roll_id: int) -> bool:
        with self.session_factory.begin() as session:
            session.execute(
                text("DELETE FROM roll_tags WHERE guild_id = :gid AND roll_id = :rid"),
                {"gid": self.guild_id, "rid": roll_id},
            )
            result = session.execute(
                text("DELETE FROM rolls WHERE guild_id = :gid AND id = :rid"),
                {"gid": self.guild_id, "rid": roll_id},
            )
            return (result.rowcount or 0) > 0

    def _list(self, condition: str, value: str) -> List[Roll]:
        with self.session_factory() as session:
            rows = session.execute(
                text(f"SELECT {_ROLL_COLUMNS} FROM rolls WHERE guild_id = :gid AND {condition} ORDER BY id"),
                {"gid": self.guild_id, "value": value},
            ).all()
            if not rows:
                return []
            tag_rows = session.execute(
                text(
                    """
                    SELECT roll_id, tag_type, parent_type, parent_id, character_id, help_from_character_id, is_burned
                    FROM roll_tags
                    WHERE guild_id = :gid AND roll_id IN :ids
                    """
                ).bindparams(bindparam("ids", expanding=True)),
                {"gid": self.guild_id, "ids": [int(row.id) for row in rows]},
            ).all()
        by_roll: Dict[int, list] = {}
        for tag in tag_rows:
            by_roll.setdefault(int(tag.roll_id), []).append(tag)
        return [_row_to_roll(row, by_roll.get(int(row.id), [])) for row in rows]

    def _load(self, session, roll_id: int) -> Optional[Roll]:
        row = session.execute(
            text(f"SELECT {_ROLL_COLUMNS} FROM rolls WHERE guild_id = :gid AND id = :rid"),
            {"gid": self.guild_id, "rid": roll_id},
        ).first()
        if row is None:
            return None
        tag_rows = session.execute(
            text(
                """
                SELECT roll_id, tag_type, parent_type, parent_id, character_id, help_from_character_id, is_burned
                FROM roll_tags
                WHERE guild_id = :gid AND roll_id = :rid
                """
            ),
            {"gid": self.guild_id, "rid": roll_id},
        ).all()
        return _row_to_roll(row, tag_rows)

    def _write(self, session, roll: Roll) -> None:
        session.execute(
            text(
                """
                UPDATE rolls
                SET description = :description,
                    narration_link = :narration_link,
                    justification_notes = :justification_notes,
                    might_modifier = :might_modifier,
                    status = :status,
                    confirmed_by = :confirmed_by,
                    updated_at = :updated_at
                WHERE guild_id = :gid AND id = :id
                """
            ),
            _roll_params(self.guild_id, roll),
        )
        session.execute(
            text("DELETE FROM roll_tags WHERE guild_id = :gid AND roll_id = :rid"),
            {"gid": self.guild_id, "rid": roll.id},
        )
        self._write_tags(session, roll)

    def _write_tags(self, session, roll: Roll) -> None:
        rows = [
            {
                **row,
                "gid": self.guild_id,
                "rid": roll.id,
                "parent_id": str(row["parent_id"]),
                "is_burned": 1 if row["is_burned"] else 0,
            }
            for row in roll_tag_rows(roll)
        ]
        if not rows:
            return
        session.execute(
            text(
                """
                INSERT INTO roll_tags
                    (guild_id, roll_id, tag_type, parent_type, parent_id, character_id, help_from_character_id, is_burned)
                VALUES (:gid, :rid, :tag_type, :parent_type, :parent_id, :character_id, :help_from_character_id, :is_burned)
                """
            ),
            rows,
        )
