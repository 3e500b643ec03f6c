"""
VS Recorder

Turns Pokemon Showdown replays into a team's battle history: parse each log,
work out which side was you, group games into best-of-three matches and
report per-Pokemon usage.

Usage:
    from vsr.battle_record import parse_battle_log
    from vsr.identity import resolve_identity

    record = resolve_identity(parse_battle_log(log_text), ["ash"])
    record.result  # Result.WIN
"""
