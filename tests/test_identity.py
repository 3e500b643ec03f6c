import logging

from constants import Result
from vsr.battle_record import BattleRecord, parse_battle_log
from vsr.identity import IdentityResolver, find_user_side, resolve_identity


def _record(p1, p2, winner=None):
    return BattleRecord(participants={"p1": p1, "p2": p2}, winner_name=winner)


def test_concrete_scenario_resolves_user_and_win():
    log = "\n".join([
        "|player|side-1|Ash|",
        "|player|side-2|Gary|",
        "|poke|side-1|Pikachu, L50, M|",
        "|switch|side-1a: Pikachu|Pikachu, L50, M|100/100|",
        "|win|Ash|",
    ])
    record = resolve_identity(parse_battle_log(log), ["ash"])
    assert record.user_side == "side-1"
    assert record.opponent_side == "side-2"
    assert record.result is Result.WIN
    assert record.opponent_label == "Gary"
    assert record.picks(record.user_side) == ["Pikachu"]


def test_loss_when_opponent_wins():
    record = resolve_identity(_record("Ash", "Gary", winner="Gary"), ["Ash"])
    assert record.user_side == "p1"
    assert record.result is Result.LOSS


def test_unfinished_battle_with_known_user_scores_as_loss():
    record = resolve_identity(_record("Ash", "Gary"), ["ash"])
    assert record.user_side == "p1"
    assert record.result is Result.LOSS


def test_winner_comparison_is_case_insensitive():
    record = resolve_identity(_record("Ash", "Gary", winner="ASH"), ["ash"])
    assert record.result is Result.WIN


def test_exact_match_beats_substring():
    # "Ash" is a substring of "Ashton", but only p2 matches exactly
    record = resolve_identity(_record("Ashton", "Ash", winner="Ash"), ["ash"])
    assert record.user_side == "p2"
    assert record.opponent_label == "Ashton"
    assert record.result is Result.WIN


def test_substring_fallback():
    record = resolve_identity(_record("Gary", "xXAshKetchumXx", winner="Gary"), ["ashketchum"])
    assert record.user_side == "p2"
    assert record.result is Result.LOSS
    assert record.opponent_label == "Gary"


def test_substring_fallback_other_direction():
    # the display name is contained in the known name
    assert find_user_side(_record("Red", "Ash K"), ["ash k ketchum"]) == "p2"


def test_no_match_is_unknown(caplog):
    with caplog.at_level(logging.WARNING):
        record = resolve_identity(_record("Red", "Blue", winner="Red"), ["ash"])
    assert record.user_side is None
    assert record.opponent_side is None
    assert record.result is Result.UNKNOWN
    assert record.opponent_label == "Red vs Blue"
    assert "Could not identify" in caplog.text


def test_both_sides_matching_is_unknown():
    record = resolve_identity(_record("Ash", "ASH", winner="Ash"), ["ash"])
    assert record.user_side is None
    assert record.result is Result.UNKNOWN


def test_both_sides_matching_substring_is_unknown():
    record = resolve_identity(_record("AshA", "AshB"), ["ash"])
    assert record.user_side is None
    assert record.opponent_label == "AshA vs AshB"


def test_empty_known_names_is_unknown():
    record = resolve_identity(_record("Ash", "Gary", winner="Ash"), [])
    assert record.result is Result.UNKNOWN


def test_input_record_is_not_modified():
    before = _record("Ash", "Gary", winner="Ash")
    resolve_identity(before, ["ash"])
    assert before.user_side is None
    assert before.result is Result.UNKNOWN


def test_resolution_is_idempotent():
    resolver = IdentityResolver([" Ash ", "ash", ""])
    assert resolver.known_user_names == ["ash"]
    once = resolver.resolve(_record("Gary", "Ash", winner="Gary"))
    twice = resolver.resolve(once)
    assert once == twice


def test_unknown_iff_no_user_side():
    for names in (["ash"], ["nobody"], []):
        record = resolve_identity(_record("Ash", "Gary", winner="Ash"), names)
        assert (record.result is Result.UNKNOWN) == (record.user_side is None)
