"""
Work out which side of a BattleRecord is the user.

Rules, first one that picks exactly one side wins:
  1. a side's display name equals a known name (case-insensitive)
  2. a known name is a substring of a side's name, or the other way round
Otherwise the record stays unresolved and its result is unknown.
"""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from constants import Result
from vsr.battle_record import BattleRecord

logger = logging.getLogger(__name__)


def _normalize_names(known_user_names: Iterable[str]) -> List[str]:
    names = []
    for name in known_user_names or ():
        cleaned = (name or "").strip().lower()
        if cleaned and cleaned not in names:
            names.append(cleaned)
    return names


def _exact_match(display_name: str, known: List[str]) -> bool:
    return display_name.strip().lower() in known


def _substring_match(display_name: str, known: List[str]) -> bool:
    candidate = display_name.strip().lower()
    if not candidate:
        return False
    return any(name in candidate or candidate in name for name in known)


def _single_matching_side(record: BattleRecord, known: List[str], test) -> Optional[str]:
    matches = [side for side in record.sides if test(record.participants[side], known)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        logger.debug("Sides %s all match known names, not picking one", matches)
    return None


def find_user_side(record: BattleRecord, known_user_names: Iterable[str]) -> Optional[str]:
    known = _normalize_names(known_user_names)
    if not known:
        return None
    side = _single_matching_side(record, known, _exact_match)
    if side is None:
        side = _single_matching_side(record, known, _substring_match)
    return side


def _other_side(record: BattleRecord, side: str) -> Optional[str]:
    others = [s for s in record.sides if s != side]
    return others[0] if others else None


def _versus_label(record: BattleRecord) -> str:
    names = [record.participants[side] for side in record.sides]
    while len(names) < 2:
        names.append("Unknown")
    return f"{names[0]} vs {names[1]}"


def resolve_identity(record: BattleRecord, known_user_names: Iterable[str]) -> BattleRecord:
    """
    Return a copy of ``record`` with user_side, opponent_side, result and
    opponent_label filled in. The input record is not modified.

    A record with a resolved user but no winner line scores as a loss.
    """
    user_side = find_user_side(record, known_user_names)
    if user_side is None:
        if len(record.participants) == 2:
            logger.warning("Could not identify the user in %s", _versus_label(record))
        return replace(
            record,
            user_side=None,
            opponent_side=None,
            result=Result.UNKNOWN,
            opponent_label=_versus_label(record),
        )

    opponent_side = _other_side(record, user_side)
    user_name = record.participants[user_side]
    winner = record.winner_name
    if winner is not None and winner.strip().lower() == user_name.strip().lower():
        result = Result.WIN
    else:
        result = Result.LOSS
    return replace(
        record,
        user_side=user_side,
        opponent_side=opponent_side,
        result=result,
        opponent_label=record.participants.get(opponent_side, "Unknown") if opponent_side else "Unknown",
    )


class IdentityResolver:
    """Holds the caller's known names so one resolver can be reused across a batch."""

    def __init__(self, known_user_names: Iterable[str]):
        self.known_user_names = _normalize_names(known_user_names)

    def resolve(self, record: BattleRecord) -> BattleRecord:
        return resolve_identity(record, self.known_user_names)
