"""
Fold a tokenized Showdown log into one BattleRecord.

The builder is a single forward pass over RawEvents. It only records what the
log says; deciding which side is the user happens in vsr.identity.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from constants import (
    BESTOF_TAG,
    BO3_TIER_MARKER,
    LEAD_COUNT,
    RATING_MARKER,
    EventKind,
    Result,
)
from vsr.log_tokenizer import RawEvent, tokenize
from vsr.names import resolve_to_roster_entry, resolve_wildcard, strip_details

logger = logging.getLogger(__name__)

# "1279 &rarr; <strong>1294</strong>" in replays, "1279 → 1294" elsewhere
RATING_PATTERN = re.compile(
    r"(\d+)\s*(?:&rarr;|→|->)\s*(?:<strong>)?\s*(\d+)", re.IGNORECASE
)
BESTOF_PATTERN = re.compile(
    r"<strong>Game (\d+)</strong>.*?href=\"/game-bestof3-([^\"]+)\"", re.IGNORECASE
)
# "p1a" -> "p1", "side-1a" -> "side-1"
SLOT_POSITION = re.compile(r"^(.*?\d)[a-z]?$")


@dataclass(frozen=True)
class SpecialMechanicEvent:
    species: str
    variant: str


@dataclass(frozen=True)
class RatingChange:
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before


@dataclass(frozen=True)
class SeriesInfo:
    """Best-of-three marker parsed from a Bo3 log."""
    series_id: str
    game_number: int


@dataclass
class BattleRecord:
    battle_id: Optional[str] = None
    participants: Dict[str, str] = field(default_factory=dict)
    revealed_roster: Dict[str, List[str]] = field(default_factory=dict)
    # ordered, duplicate-free: first-seen order gives the leads
    actual_picks: Dict[str, List[str]] = field(default_factory=dict)
    special_mechanic_events: Dict[str, List[SpecialMechanicEvent]] = field(default_factory=dict)
    rating_changes: Dict[str, RatingChange] = field(default_factory=dict)
    move_usage: Dict[str, Dict[str, Dict[str, int]]] = field(default_factory=dict)
    winner_name: Optional[str] = None
    turn_count: int = 0
    format: Optional[str] = None
    series: Optional[SeriesInfo] = None
    uploaded_at: Optional[int] = None
    # set by vsr.identity
    user_side: Optional[str] = None
    opponent_side: Optional[str] = None
    result: Result = Result.UNKNOWN
    opponent_label: str = ""

    @property
    def sides(self) -> List[str]:
        return sorted(self.participants)

    def picks(self, side: Optional[str]) -> List[str]:
        if side is None:
            return []
        return list(self.actual_picks.get(side, []))

    def leads(self, side: Optional[str]) -> List[str]:
        return self.picks(side)[:LEAD_COUNT]

    def roster(self, side: Optional[str]) -> List[str]:
        """Revealed roster with duplicates dropped."""
        if side is None:
            return []
        return list(dict.fromkeys(self.revealed_roster.get(side, [])))

    def mechanic_events(self, side: Optional[str]) -> List[SpecialMechanicEvent]:
        if side is None:
            return []
        return list(self.special_mechanic_events.get(side, []))

    @property
    def user_name(self) -> Optional[str]:
        return self.participants.get(self.user_side) if self.user_side else None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["result"] = self.result.value
        data["rating_changes"] = {
            side: {"before": rc.before, "after": rc.after, "delta": rc.delta}
            for side, rc in self.rating_changes.items()
        }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BattleRecord":
        series = data.get("series")
        return cls(
            battle_id=data.get("battle_id"),
            participants=dict(data.get("participants") or {}),
            revealed_roster={k: list(v) for k, v in (data.get("revealed_roster") or {}).items()},
            actual_picks={k: list(v) for k, v in (data.get("actual_picks") or {}).items()},
            special_mechanic_events={
                side: [SpecialMechanicEvent(e["species"], e["variant"]) for e in events]
                for side, events in (data.get("special_mechanic_events") or {}).items()
            },
            rating_changes={
                side: RatingChange(rc["before"], rc["after"])
                for side, rc in (data.get("rating_changes") or {}).items()
            },
            move_usage=data.get("move_usage") or {},
            winner_name=data.get("winner_name"),
            turn_count=data.get("turn_count", 0),
            format=data.get("format"),
            series=SeriesInfo(series["series_id"], series["game_number"]) if series else None,
            uploaded_at=data.get("uploaded_at"),
            user_side=data.get("user_side"),
            opponent_side=data.get("opponent_side"),
            result=Result(data.get("result") or Result.UNKNOWN),
            opponent_label=data.get("opponent_label") or "",
        )


def side_of_slot(slot_token: str) -> str:
    """'p1a: Pikachu' -> 'p1'"""
    position = slot_token.split(":", 1)[0].strip()
    match = SLOT_POSITION.match(position)
    return match.group(1) if match else position


def _slot_position(slot_token: str) -> str:
    return slot_token.split(":", 1)[0].strip()


def _slot_nickname(slot_token: str) -> str:
    if ":" not in slot_token:
        return slot_token.strip()
    return slot_token.split(":", 1)[1].strip()


class BattleRecordBuilder:
    """Accumulates one BattleRecord from the events of a single game."""

    def __init__(self):
        self.record = BattleRecord()
        self._position_species: Dict[str, str] = {}
        self._bo3 = False
        self._handlers: Dict[EventKind, Callable[[RawEvent], None]] = {
            EventKind.PARTICIPANT: self._on_participant,
            EventKind.ROSTER_REVEAL: self._on_roster_reveal,
            EventKind.ACTIVE_SWITCH: self._on_switch,
            EventKind.DRAG: self._on_switch,
            EventKind.SPECIAL_MECHANIC: self._on_special_mechanic,
            EventKind.RATING_REPORT: self._on_rating_report,
            EventKind.BATTLE_WON: self._on_win,
            EventKind.TURN: self._on_turn,
            EventKind.MOVE: self._on_move,
            EventKind.TIER: self._on_tier,
            EventKind.BEST_OF: self._on_best_of,
            EventKind.SHOW_TEAM: self._on_show_team,
        }

    def feed(self, event: RawEvent) -> None:
        handler = self._handlers.get(event.kind)
        if handler is not None:
            handler(event)

    def feed_all(self, events: Iterable[RawEvent]) -> "BattleRecordBuilder":
        for event in events:
            self.feed(event)
        return self

    def build(self) -> BattleRecord:
        if len(self.record.participants) < 2:
            logger.warning(
                "Log announced %d participant(s), expected 2", len(self.record.participants)
            )
        if not self._bo3:
            self.record.series = None
        return self.record

    def _on_participant(self, event: RawEvent) -> None:
        side = event.field(0).strip()
        name = event.field(1).strip()
        if not side or not name:
            # Showdown re-announces "|player|p1|" with no name when a player leaves
            return
        known = self.record.participants.get(side)
        if known is not None and known != name:
            logger.warning(
                "Side %s announced twice (%s, then %s); keeping the latest", side, known, name
            )
        self.record.participants[side] = name

    def _on_roster_reveal(self, event: RawEvent) -> None:
        side = event.field(0).strip()
        species = strip_details(event.field(1))
        if not side or not species:
            return
        self.record.revealed_roster.setdefault(side, []).append(species)

    def _on_switch(self, event: RawEvent) -> None:
        slot = event.field(0)
        species = strip_details(event.field(1))
        if not slot or not species:
            logger.debug("Skipping switch line %d: %r", event.line_number, event.raw)
            return
        side = side_of_slot(slot)
        roster = self.record.revealed_roster.get(side)
        if roster:
            resolve_wildcard(roster, species)
        species = resolve_to_roster_entry(roster, species)
        self._position_species[_slot_position(slot)] = species

        picks = self.record.actual_picks.setdefault(side, [])
        if species not in picks:
            picks.append(species)

    def _on_special_mechanic(self, event: RawEvent) -> None:
        slot = event.field(0)
        if not slot:
            return
        side = side_of_slot(slot)
        species = self._position_species.get(_slot_position(slot)) or _slot_nickname(slot)
        # "|-terastallize|p1a: X|Water|" ends in an empty field
        variant = next((f for f in reversed(event.fields[1:]) if f.strip()), "").strip().lower()
        self.record.special_mechanic_events.setdefault(side, []).append(
            SpecialMechanicEvent(species=species, variant=variant)
        )

    def _on_rating_report(self, event: RawEvent) -> None:
        text = event.field(0)
        if RATING_MARKER not in text:
            return
        name = text.split(RATING_MARKER, 1)[0].strip()
        match = RATING_PATTERN.search(text)
        if match is None:
            logger.debug("Could not read rating from line %d: %r", event.line_number, text)
            return
        for side, participant in self.record.participants.items():
            if participant.lower() == name.lower():
                self.record.rating_changes[side] = RatingChange(
                    before=int(match.group(1)), after=int(match.group(2))
                )
                return
        logger.debug("Rating line for unknown player %r ignored", name)

    def _on_win(self, event: RawEvent) -> None:
        winner = event.field(0).strip()
        if winner:
            self.record.winner_name = winner

    def _on_turn(self, event: RawEvent) -> None:
        try:
            turn = int(event.field(0).strip())
        except ValueError:
            return
        self.record.turn_count = max(self.record.turn_count, turn)

    def _on_move(self, event: RawEvent) -> None:
        slot = event.field(0)
        move = event.field(1).strip()
        species = self._position_species.get(_slot_position(slot))
        if not move or species is None:
            return
        side = side_of_slot(slot)
        moves = self.record.move_usage.setdefault(side, {}).setdefault(species, {})
        moves[move] = moves.get(move, 0) + 1

    def _on_tier(self, event: RawEvent) -> None:
        tier = event.field(0).strip()
        self.record.format = tier or None
        self._bo3 = BO3_TIER_MARKER in tier

    def _on_best_of(self, event: RawEvent) -> None:
        if event.field(0) != BESTOF_TAG:
            return
        match = BESTOF_PATTERN.search("|".join(event.fields[1:]))
        if match is None:
            return
        self.record.series = SeriesInfo(series_id=match.group(2), game_number=int(match.group(1)))

    def _on_show_team(self, event: RawEvent) -> None:
        side = event.field(0).strip()
        roster = self.record.revealed_roster.get(side)
        if not roster:
            return
        packed = "|".join(event.fields[1:])
        for entry in packed.split("]"):
            species = entry.split("|", 1)[0].strip()
            if species:
                resolve_wildcard(roster, species)


def build_battle_record(events: Iterable[RawEvent]) -> BattleRecord:
    return BattleRecordBuilder().feed_all(events).build()


def parse_battle_log(log_text: str) -> BattleRecord:
    """Tokenize and fold a raw log in one call."""
    return build_battle_record(tokenize(log_text))
