"""
Per-Pokemon usage and win rates for one team, and its record against
opponent Pokemon.

Everything here is a projection over already-parsed history: nothing is
stored and every figure is recomputed on demand. Only games with a definite
win/loss count; rates with no games behind them are NO_DATA, never 0.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from constants import LEAD_COUNT, MIN_MATCHUP_GAMES, TOP_LEAD_PAIRS, TOP_MATCHUPS, Result
from vsr.battle_record import BattleRecord
from vsr.rates import NO_DATA, win_rate
from vsr.names import usage_key

logger = logging.getLogger(__name__)

LEAD_PAIR_JOINER = " + "


@dataclass
class PokemonUsage:
    species: str
    usage: int = 0
    wins: int = 0
    lead_usage: int = 0
    lead_wins: int = 0
    tera_usage: int = 0
    tera_wins: int = 0
    games: int = 0

    @property
    def usage_rate(self) -> Optional[float]:
        return win_rate(self.usage, self.games)

    @property
    def win_rate(self) -> Optional[float]:
        return win_rate(self.wins, self.usage)

    @property
    def lead_win_rate(self) -> Optional[float]:
        return win_rate(self.lead_wins, self.lead_usage)

    @property
    def tera_win_rate(self) -> Optional[float]:
        return win_rate(self.tera_wins, self.tera_usage)

    def to_dict(self) -> dict:
        return {
            "species": self.species,
            "usage": self.usage,
            "usage_rate": self.usage_rate,
            "win_rate": self.win_rate,
            "lead_usage": self.lead_usage,
            "lead_win_rate": self.lead_win_rate,
            "tera_usage": self.tera_usage,
            "tera_win_rate": self.tera_win_rate,
        }


@dataclass
class LeadPairUsage:
    pair: Tuple[str, str]
    usage: int = 0
    wins: int = 0

    @property
    def key(self) -> str:
        return LEAD_PAIR_JOINER.join(self.pair)

    @property
    def win_rate(self) -> Optional[float]:
        return win_rate(self.wins, self.usage)

    def to_dict(self) -> dict:
        return {
            "pair": list(self.pair),
            "key": self.key,
            "usage": self.usage,
            "wins": self.wins,
            "win_rate": self.win_rate,
        }


@dataclass
class OpponentMatchup:
    """Record against teams that carried one opponent Pokemon."""
    species: str
    games: int = 0
    wins: int = 0
    brought: int = 0

    @property
    def win_rate(self) -> Optional[float]:
        return win_rate(self.wins, self.games)

    @property
    def attendance_rate(self) -> Optional[float]:
        # share of games where it was on the opponent's team and actually picked
        return win_rate(self.brought, self.games)

    def to_dict(self) -> dict:
        return {
            "species": self.species,
            "games": self.games,
            "wins": self.wins,
            "win_rate": self.win_rate,
            "brought": self.brought,
            "attendance_rate": self.attendance_rate,
        }


def lead_pair_key(leads: Iterable[str]) -> Optional[Tuple[str, str]]:
    """Unordered pair of lead usage keys, or None when fewer than two leads."""
    keys = sorted({usage_key(species) for species in leads})
    if len(keys) != LEAD_COUNT:
        return None
    return keys[0], keys[1]


def definite_games(records: Iterable[BattleRecord]) -> List[BattleRecord]:
    return [r for r in records if r.result in (Result.WIN, Result.LOSS)]


def opponent_team(record: BattleRecord) -> List[str]:
    """Usage keys of every opponent Pokemon seen in team preview or on the field."""
    side = record.opponent_side
    seen = record.roster(side) + record.picks(side)
    return list(dict.fromkeys(key for key in (usage_key(s) for s in seen) if key))


class UsageStatsEngine:
    def __init__(self, roster: Iterable[str], records: Iterable[BattleRecord]):
        # roster order is kept for display, keys are normalised
        self.roster: List[str] = []
        for species in roster or ():
            key = usage_key(species)
            if key and key not in self.roster:
                self.roster.append(key)
        self.games = definite_games(records)

    def pokemon_stats(self) -> List[PokemonUsage]:
        stats = {key: PokemonUsage(species=key, games=len(self.games)) for key in self.roster}
        for record in self.games:
            won = record.result is Result.WIN
            side = record.user_side
            picked = {usage_key(s) for s in record.picks(side)}
            leads = {usage_key(s) for s in record.leads(side)}
            tera = {usage_key(e.species) for e in record.mechanic_events(side)}
            for key, entry in stats.items():
                if key in picked:
                    entry.usage += 1
                    entry.wins += won
                if key in leads:
                    entry.lead_usage += 1
                    entry.lead_wins += won
                if key in tera:
                    entry.tera_usage += 1
                    entry.tera_wins += won
        return [stats[key] for key in self.roster]

    def lead_pairs(self) -> List[LeadPairUsage]:
        pairs: Dict[Tuple[str, str], LeadPairUsage] = {}
        for record in self.games:
            leads = record.leads(record.user_side)
            pair = lead_pair_key(leads)
            if pair is None:
                if len(leads) == LEAD_COUNT:
                    logger.debug("Leads %s share one usage key; %s left out of lead pairs", leads, record.battle_id)
                continue
            entry = pairs.setdefault(pair, LeadPairUsage(pair=pair))
            entry.usage += 1
            if record.result is Result.WIN:
                entry.wins += 1
        return list(pairs.values())

    def most_common_lead_pairs(self, limit: int = TOP_LEAD_PAIRS) -> List[LeadPairUsage]:
        ranked = sorted(self.lead_pairs(), key=lambda p: (-p.usage, p.key))
        return ranked[:limit]

    def best_lead_pairs(self, limit: int = TOP_LEAD_PAIRS) -> List[LeadPairUsage]:
        ranked = sorted(
            self.lead_pairs(),
            key=lambda p: (-(p.win_rate if p.win_rate is not NO_DATA else -1), -p.usage, p.key),
        )
        return ranked[:limit]

    def move_usage(self) -> Dict[str, Dict[str, int]]:
        """Roster species -> move -> times used by the user's side, most used first."""
        totals: Dict[str, Counter] = defaultdict(Counter)
        for record in self.games:
            for species, moves in record.move_usage.get(record.user_side or "", {}).items():
                key = usage_key(species)
                if key in self.roster:
                    totals[key].update(moves)
        return {key: dict(totals[key].most_common()) for key in self.roster if key in totals}

    def matchup_stats(self) -> List[OpponentMatchup]:
        matchups: Dict[str, OpponentMatchup] = {}
        for record in self.games:
            won = record.result is Result.WIN
            brought = {usage_key(s) for s in record.picks(record.opponent_side)}
            for key in opponent_team(record):
                entry = matchups.setdefault(key, OpponentMatchup(species=key))
                entry.games += 1
                entry.wins += won
                entry.brought += key in brought
        return sorted(matchups.values(), key=lambda m: (-m.games, m.species))

    def _frequent_matchups(self, min_games: int) -> List[OpponentMatchup]:
        return [m for m in self.matchup_stats() if m.games >= min_games]

    def best_matchups(self, limit: int = TOP_MATCHUPS, min_games: int = MIN_MATCHUP_GAMES) -> List[OpponentMatchup]:
        ranked = sorted(self._frequent_matchups(min_games), key=lambda m: (-m.win_rate, -m.games, m.species))
        return ranked[:limit]

    def worst_matchups(self, limit: int = TOP_MATCHUPS, min_games: int = MIN_MATCHUP_GAMES) -> List[OpponentMatchup]:
        ranked = sorted(self._frequent_matchups(min_games), key=lambda m: (m.win_rate, -m.games, m.species))
        return ranked[:limit]

    def highest_attendance(self, limit: int = TOP_MATCHUPS) -> List[OpponentMatchup]:
        ranked = sorted(self.matchup_stats(), key=lambda m: (-m.attendance_rate, -m.games, m.species))
        return ranked[:limit]

    def lowest_attendance(self, limit: int = TOP_MATCHUPS) -> List[OpponentMatchup]:
        ranked = sorted(self.matchup_stats(), key=lambda m: (m.attendance_rate, -m.games, m.species))
        return ranked[:limit]

    def custom_matchup(self, opponent_core: Iterable[str]) -> dict:
        """
        Record against teams carrying any or all of ``opponent_core``.

        ``any`` counts games where the opponent had at least one of them,
        ``exact`` games where it had every one. ``pokemon`` breaks it down per
        species, most faced first.
        """
        core = list(dict.fromkeys(k for k in (usage_key(s) for s in opponent_core) if k))
        per_species = {key: OpponentMatchup(species=key) for key in core}
        any_games = any_wins = exact_games = exact_wins = 0
        for record in self.games:
            won = record.result is Result.WIN
            team = set(opponent_team(record))
            present = [key for key in core if key in team]
            for key in present:
                per_species[key].games += 1
                per_species[key].wins += won
            if present:
                any_games += 1
                any_wins += won
            if core and len(present) == len(core):
                exact_games += 1
                exact_wins += won

        faced = sorted((m for m in per_species.values() if m.games), key=lambda m: (-m.games, m.species))
        rates = [m.win_rate for m in faced]
        return {
            "pokemon": [
                {"species": m.species, "games": m.games, "wins": m.wins, "win_rate": m.win_rate} for m in faced
            ],
            "any": {"games": any_games, "wins": any_wins, "win_rate": win_rate(any_wins, any_games)},
            "exact": {"games": exact_games, "wins": exact_wins, "win_rate": win_rate(exact_wins, exact_games)},
            "average_win_rate": round(sum(rates) / len(rates), 1) if rates else NO_DATA,
        }

    def to_dict(self) -> dict:
        return {
            "games": len(self.games),
            "pokemon": [entry.to_dict() for entry in self.pokemon_stats()],
            "most_common_lead_pairs": [p.to_dict() for p in self.most_common_lead_pairs()],
            "best_lead_pairs": [p.to_dict() for p in self.best_lead_pairs()],
            "move_usage": self.move_usage(),
            "matchups": {
                "best": [m.to_dict() for m in self.best_matchups()],
                "worst": [m.to_dict() for m in self.worst_matchups()],
                "highest_attendance": [m.to_dict() for m in self.highest_attendance()],
                "lowest_attendance": [m.to_dict() for m in self.lowest_attendance()],
            },
        }
