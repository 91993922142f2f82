from __future__ import annotations

from typing import Callable, Iterable, Optional, Tuple

from mistroll.application.dtos import PowerBreakdown
from mistroll.domain.models.tag import ResolvedTag
from mistroll.domain.models.tag_entity import TagEntity


BURNED_TAG_BONUS = 3
TAG_BONUS = 1

Resolve = Callable[[TagEntity], Optional[ResolvedTag]]


def _side(entities: Iterable[TagEntity], resolve: Resolve) -> Tuple[int, list[Tuple[TagEntity, ResolvedTag]]]:
    """Highest status value on one side plus the remaining non-status tags."""
    highest_status = 0
    others: list[Tuple[TagEntity, ResolvedTag]] = []
    for entity in entities:
        resolved = resolve(entity)
        if resolved is None:
            continue
        if resolved.is_status:
            highest_status = max(highest_status, resolved.status_value)
        else:
            others.append((entity, resolved))
    return highest_status, others


def calculate_breakdown(
    help_tags: Iterable[TagEntity],
    hinder_tags: Iterable[TagEntity],
    burned_tags: Iterable[TagEntity],
    might: int,
    resolve: Resolve,
) -> PowerBreakdown:
    help_set = frozenset(help_tags)
    burned = frozenset(burned_tags) & help_set

    help_status, help_others = _side(help_set, resolve)
    hinder_status, hinder_others = _side(frozenset(hinder_tags), resolve)

    burn_bonus = 0
    help_total = 0
    for entity, _ in help_others:
        if entity in burned:
            burn_bonus += BURNED_TAG_BONUS
        else:
            help_total += TAG_BONUS

    return PowerBreakdown(
        help_status=help_status,
        help_tags=help_total,
        burn_bonus=burn_bonus,
        hinder_status=hinder_status,
        hinder_tags=TAG_BONUS * len(hinder_others),
        might=int(might or 0),
    )


def calculate_power(
    help_tags: Iterable[TagEntity],
    hinder_tags: Iterable[TagEntity],
    burned_tags: Iterable[TagEntity],
    might: int,
    resolve: Resolve,
) -> int:
    """Net modifier for two six-sided dice.

    Statuses do not stack: each side counts only its single highest status.
    Every other help tag adds 1, the burned one adds 3 instead, and every other
    hinder tag (weaknesses included) subtracts 1. Might is added last.
    Unresolvable references are skipped.
    """
    return calculate_breakdown(help_tags, hinder_tags, burned_tags, might, resolve).total

