"""
Group a team's games into best-of-three matches.

Grouping is a pure function of the chronologically ordered game list, so it
is recomputed from history every time instead of being stored. Only the
user-entered notes and tags for a match are persisted, keyed by match id.

Closing rules for the active group, checked before each game is appended:
  - the opponent changed
  - the group already holds three games
  - the game belongs to a different Bo3 series (or to none) than the group
  - the group belongs to a Bo3 series and one side already has two wins
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from constants import (
    GAMES_TO_WIN_SERIES,
    MATCHES_KEY,
    MAX_GAMES_PER_SERIES,
    MatchResult,
    Result,
)
from vsr.battle_record import BattleRecord
from vsr.orchestrator import team_history
from vsr.rates import win_rate
from vsr.storage import Store

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class SeriesScore:
    wins: int = 0
    losses: int = 0


@dataclass
class MatchGame:
    game_number: int
    record: BattleRecord


@dataclass
class MatchGroup:
    id: str
    team_id: Optional[str]
    opponent_label: str
    games: List[MatchGame] = field(default_factory=list)
    series_score: SeriesScore = field(default_factory=SeriesScore)
    match_result: MatchResult = MatchResult.INCOMPLETE
    series_id: Optional[str] = None
    notes: str = ""
    tags: List[str] = field(default_factory=list)

    @property
    def battle_ids(self) -> List[str]:
        return [g.record.battle_id or "" for g in self.games]

    @property
    def is_complete(self) -> bool:
        return self.match_result is not MatchResult.INCOMPLETE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "opponent_label": self.opponent_label,
            "series_id": self.series_id,
            "games": [
                {
                    "game_number": g.game_number,
                    "battle_id": g.record.battle_id,
                    "result": g.record.result.value,
                }
                for g in self.games
            ],
            "series_score": {"wins": self.series_score.wins, "losses": self.series_score.losses},
            "match_result": self.match_result.value,
            "notes": self.notes,
            "tags": list(self.tags),
        }


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def score_games(records: Iterable[BattleRecord]) -> SeriesScore:
    """Count wins and losses. Unknown games count toward neither side."""
    score = SeriesScore()
    for record in records:
        if record.result is Result.WIN:
            score.wins += 1
        elif record.result is Result.LOSS:
            score.losses += 1
    return score


def decide_match_result(score: SeriesScore, games_played: int) -> MatchResult:
    if score.wins >= GAMES_TO_WIN_SERIES:
        return MatchResult.WIN
    if score.losses >= GAMES_TO_WIN_SERIES:
        return MatchResult.LOSS
    if games_played >= MAX_GAMES_PER_SERIES and score.wins == score.losses and score.wins > 0:
        return MatchResult.TIE
    return MatchResult.INCOMPLETE


def match_id(battle_ids: Iterable[str]) -> str:
    """Stable id from the set of constituent battle ids."""
    raw = ",".join(sorted(battle_ids))
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def _series_id(record: BattleRecord) -> Optional[str]:
    return record.series.series_id if record.series else None


def _starts_new_group(active: List[BattleRecord], record: BattleRecord) -> bool:
    if record.opponent_label != active[0].opponent_label:
        return True
    if len(active) >= MAX_GAMES_PER_SERIES:
        return True

    active_series = _series_id(active[-1])
    incoming_series = _series_id(record)
    if active_series != incoming_series:
        # a different Bo3 series, or Bo1 and Bo3 games side by side
        return True

    if active_series:
        score = score_games(active)
        if score.wins >= GAMES_TO_WIN_SERIES or score.losses >= GAMES_TO_WIN_SERIES:
            return True
    return False


def _close_group(records: List[BattleRecord], team_id: Optional[str]) -> MatchGroup:
    score = score_games(records)
    series_ids = [s for s in (_series_id(r) for r in records) if s]
    return MatchGroup(
        id=match_id(r.battle_id or "" for r in records),
        team_id=team_id,
        opponent_label=records[0].opponent_label,
        games=[MatchGame(game_number=i, record=r) for i, r in enumerate(records, start=1)],
        series_score=score,
        match_result=decide_match_result(score, len(records)),
        series_id=series_ids[0] if series_ids else None,
    )


def aggregate_matches(
    records: Iterable[BattleRecord], team_id: Optional[str] = None
) -> List[MatchGroup]:
    """
    Single chronological scan over ``records`` (oldest first).

    Every record lands in exactly one group; game numbers inside a group run
    1, 2, 3 in the order the games were played.
    """
    groups: List[MatchGroup] = []
    active: List[BattleRecord] = []
    for record in records:
        if active and _starts_new_group(active, record):
            groups.append(_close_group(active, team_id))
            active = []
        active.append(record)
    if active:
        groups.append(_close_group(active, team_id))
    return groups


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

def summarize_matches(groups: Iterable[MatchGroup]) -> Dict[str, Any]:
    groups = list(groups)
    wins = sum(1 for g in groups if g.match_result is MatchResult.WIN)
    losses = sum(1 for g in groups if g.match_result is MatchResult.LOSS)
    ties = sum(1 for g in groups if g.match_result is MatchResult.TIE)
    complete = wins + losses + ties
    return {
        "total": len(groups),
        "complete": complete,
        "incomplete": len(groups) - complete,
        "wins": wins,
        "losses": losses,
        "ties": ties,
        "win_rate": win_rate(wins, complete),
    }


def summarize_games(records: Iterable[BattleRecord]) -> Dict[str, Any]:
    records = list(records)
    score = score_games(records)
    decided = score.wins + score.losses
    return {
        "total": len(records),
        "wins": score.wins,
        "losses": score.losses,
        "unknown": len(records) - decided,
        "win_rate": win_rate(score.wins, decided),
    }


def attach_annotations(
    groups: Iterable[MatchGroup], annotations: Optional[Dict[str, dict]]
) -> List[MatchGroup]:
    """Copy stored notes/tags onto the groups they belong to, by match id."""
    groups = list(groups)
    annotations = annotations or {}
    for group in groups:
        stored = annotations.get(group.id)
        if not stored:
            continue
        group.notes = stored.get("notes") or ""
        group.tags = list(stored.get("tags") or [])
    return groups


# ---------------------------------------------------------------------------
# Store-backed view
# ---------------------------------------------------------------------------

class MatchAggregator:
    """Reads a team's parsed history from the store and keeps match notes/tags there."""

    def __init__(self, store: Store):
        self.store = store

    def _annotations(self) -> Dict[str, dict]:
        return self.store.get(MATCHES_KEY) or {}

    def matches(self, team_id: Optional[str] = None) -> List[MatchGroup]:
        groups = aggregate_matches(team_history(self.store, team_id), team_id)
        return attach_annotations(groups, self._annotations())

    def summary(self, team_id: Optional[str] = None) -> Dict[str, Any]:
        return summarize_matches(self.matches(team_id))

    def _annotate(self, group: MatchGroup, **changes: Any) -> Dict[str, Any]:
        annotations = self._annotations()
        stored = annotations.get(group.id) or {
            "id": group.id,
            "team_id": group.team_id,
            "opponent_label": group.opponent_label,
            "notes": "",
            "tags": [],
            "created_at": datetime.now().isoformat(),
        }
        stored.update(changes)
        stored["updated_at"] = datetime.now().isoformat()
        annotations[group.id] = stored
        self.store.set(MATCHES_KEY, annotations)
        return stored

    def _find(self, group_id: str, team_id: Optional[str]) -> MatchGroup:
        for group in self.matches(team_id):
            if group.id == group_id:
                return group
        raise KeyError(group_id)

    def update_notes(self, group_id: str, notes: str, team_id: Optional[str] = None) -> Dict[str, Any]:
        return self._annotate(self._find(group_id, team_id), notes=notes or "")

    def update_tags(
        self, group_id: str, tags: Iterable[str], team_id: Optional[str] = None
    ) -> Dict[str, Any]:
        cleaned = []
        for tag in tags or ():
            tag = (tag or "").strip()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        return self._annotate(self._find(group_id, team_id), tags=cleaned)

    def delete_annotations(self, team_id: str) -> int:
        annotations = self._annotations()
        doomed = [mid for mid, data in annotations.items() if data.get("team_id") == team_id]
        for mid in doomed:
            del annotations[mid]
        if doomed:
            self.store.set(MATCHES_KEY, annotations)
            logger.info("Removed annotations for %d match(es) of team %s", len(doomed), team_id)
        return len(doomed)
