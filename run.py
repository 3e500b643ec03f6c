import asyncio
import json
import logging
import sys
import traceback
from pathlib import Path

from dotenv import load_dotenv

# Load .env before config reads VSR_* defaults
load_dotenv(Path(__file__).resolve().parent / ".env")

from config import VsRecorderConfig, init_logging  # noqa: E402
from constants import Lifecycle  # noqa: E402
from vsr.battle_record import BattleRecord, parse_battle_log  # noqa: E402
from vsr.fetcher import ShowdownReplayFetcher, extract_replay_urls, fetch_replay_blocking  # noqa: E402
from vsr.identity import resolve_identity  # noqa: E402
from vsr.match_aggregator import MatchAggregator, summarize_games  # noqa: E402
from vsr.orchestrator import FetchOrchestrator, team_history  # noqa: E402
from vsr.storage import JsonFileStore  # noqa: E402
from vsr.usage_stats import UsageStatsEngine  # noqa: E402

logger = logging.getLogger(__name__)


def _read_references(source: str) -> list[str]:
    if source == "-":
        text = sys.stdin.read()
    else:
        text = Path(source).read_text(encoding="utf-8")
    return extract_replay_urls(text)


def _print_lifecycle(reference, state, payload):
    if state is Lifecycle.PARSED:
        record = payload.record
        print(f"[{state.value:<10}] {reference}  {record.result.value} vs {record.opponent_label}")
    elif state is Lifecycle.FAILED:
        print(f"[{state.value:<10}] {reference}  {payload}")
    else:
        print(f"[{state.value:<10}] {reference}")


async def import_replays(source: str) -> int:
    references = _read_references(source)
    if not references:
        logger.warning("No replay URLs found in %s", source)
        return 1

    store = JsonFileStore(VsRecorderConfig.store_path)
    async with ShowdownReplayFetcher(
        base_url=VsRecorderConfig.replay_base_url,
        timeout_sec=VsRecorderConfig.fetch_timeout_sec,
    ) as fetcher:
        orchestrator = FetchOrchestrator(
            fetch=fetcher.fetch,
            store=store,
            known_user_names=VsRecorderConfig.known_user_names,
            observer=_print_lifecycle,
            team_id=VsRecorderConfig.team_id,
            max_concurrent=VsRecorderConfig.max_concurrent_fetches,
            request_delay_sec=VsRecorderConfig.request_delay_sec,
            fetch_timeout_sec=VsRecorderConfig.fetch_timeout_sec,
        )
        await orchestrator.process(references)

    counts = orchestrator.status_counts()
    print(f"Parsed: {counts[Lifecycle.PARSED]}  Failed: {counts[Lifecycle.FAILED]}")
    return 0 if counts[Lifecycle.FAILED] == 0 else 2


def _default_roster(records: list[BattleRecord]) -> list[str]:
    roster = []
    for record in records:
        for species in record.picks(record.user_side):
            if species not in roster:
                roster.append(species)
    return roster


def _fmt_rate(rate) -> str:
    return "-" if rate is None else f"{rate:.1f}%"


def _split_csv(text: str) -> list[str]:
    return [s.strip() for s in text.split(",") if s.strip()]


def show_stats(roster_arg: str, as_json: bool, against_arg: str = "") -> int:
    store = JsonFileStore(VsRecorderConfig.store_path)
    team_id = VsRecorderConfig.team_id
    records = team_history(store, team_id)
    roster = _split_csv(roster_arg) or _default_roster(records)
    against = _split_csv(against_arg)

    aggregator = MatchAggregator(store)
    groups = aggregator.matches(team_id)
    engine = UsageStatsEngine(roster, records)

    if as_json:
        report = {
            "games": summarize_games(records),
            "matches": aggregator.summary(team_id),
            "match_groups": [g.to_dict() for g in groups],
            "usage": engine.to_dict(),
        }
        if against:
            report["against"] = engine.custom_matchup(against)
        print(json.dumps(report, indent=2))
        return 0

    games = summarize_games(records)
    print(f"Games: {games['total']}  W {games['wins']} / L {games['losses']} / ? {games['unknown']}"
          f"  win rate {_fmt_rate(games['win_rate'])}")
    matches = aggregator.summary(team_id)
    print(f"Bo3 matches: {matches['total']}  W {matches['wins']} / L {matches['losses']} / T {matches['ties']}"
          f"  ({matches['incomplete']} incomplete)  win rate {_fmt_rate(matches['win_rate'])}")
    print()
    print(f"{'Pokemon':<24}{'Used':>6}{'Win%':>8}{'Lead':>6}{'Lead%':>8}{'Tera':>6}{'Tera%':>8}")
    for entry in engine.pokemon_stats():
        print(
            f"{entry.species:<24}{entry.usage:>6}{_fmt_rate(entry.win_rate):>8}"
            f"{entry.lead_usage:>6}{_fmt_rate(entry.lead_win_rate):>8}"
            f"{entry.tera_usage:>6}{_fmt_rate(entry.tera_win_rate):>8}"
        )
    print()
    print("Most common leads:")
    for pair in engine.most_common_lead_pairs():
        print(f"  {pair.key:<40}{pair.usage:>4}  {_fmt_rate(pair.win_rate)}")
    print("Best leads:")
    for pair in engine.best_lead_pairs():
        print(f"  {pair.key:<40}{pair.usage:>4}  {_fmt_rate(pair.win_rate)}")
    print()
    for title, matchups in (("Best matchups:", engine.best_matchups()), ("Worst matchups:", engine.worst_matchups())):
        print(title)
        for m in matchups:
            print(f"  {m.species:<24}{m.games:>4}  {_fmt_rate(m.win_rate):>7}  brought {_fmt_rate(m.attendance_rate)}")
    if against:
        custom = engine.custom_matchup(against)
        print()
        print(f"Against {', '.join(against)}:")
        print(f"  any   {custom['any']['games']:>4}  {_fmt_rate(custom['any']['win_rate'])}")
        print(f"  exact {custom['exact']['games']:>4}  {_fmt_rate(custom['exact']['win_rate'])}")
        for entry in custom["pokemon"]:
            print(f"  {entry['species']:<24}{entry['games']:>4}  {_fmt_rate(entry['win_rate'])}")
    return 0


def inspect_replay(reference: str) -> int:
    fetched = fetch_replay_blocking(
        reference,
        base_url=VsRecorderConfig.replay_base_url,
        timeout_sec=VsRecorderConfig.fetch_timeout_sec,
    )
    record = parse_battle_log(fetched.log)
    record.battle_id = fetched.battle_id
    record.uploaded_at = fetched.uploaded_at
    record = resolve_identity(record, VsRecorderConfig.known_user_names)
    print(json.dumps(record.to_dict(), indent=2))
    return 0


def main(argv=None) -> int:
    args = VsRecorderConfig.configure(argv)
    VsRecorderConfig.validate_config()
    init_logging(VsRecorderConfig.log_level, VsRecorderConfig.log_to_file)

    if args.command == "import":
        return asyncio.run(import_replays(args.source))
    if args.command == "stats":
        return show_stats(args.roster, args.json, args.against)
    return inspect_replay(args.reference)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception:
        logger.error(traceback.format_exc())
        raise
