from constants import EventKind
from vsr.log_tokenizer import RawEvent, tokenize, tokenize_line


def test_known_kind_keeps_fields_after_kind():
    event = tokenize_line("|switch|p1a: Pikachu|Pikachu, L50, M|100/100", 4)
    assert event.kind is EventKind.ACTIVE_SWITCH
    assert event.fields == ("p1a: Pikachu", "Pikachu, L50, M", "100/100")
    assert event.line_number == 4


def test_fields_are_not_coerced():
    event = tokenize_line("|turn|7")
    assert event.kind is EventKind.TURN
    assert event.fields == ("7",)


def test_unknown_kind_becomes_other_and_keeps_its_name():
    event = tokenize_line("|-damage|p2a: Eevee|50/100")
    assert event.kind is EventKind.OTHER
    assert event.fields == ("-damage", "p2a: Eevee", "50/100")


def test_line_without_separator_is_other():
    event = tokenize_line("garbage that is not a log line")
    assert event.kind is EventKind.OTHER
    assert event.fields == ()
    assert event.raw == "garbage that is not a log line"


def test_field_accessor_defaults_when_missing():
    event = tokenize_line("|win|")
    assert event.field(0) == ""
    assert event.field(5) == ""
    assert event.field(5, "x") == "x"


def test_tokenize_keeps_blank_lines_in_position():
    log = "|player|p1|Ash|\n\n|player|p2|Gary|\n"
    events = tokenize(log)
    assert [e.kind for e in events] == [
        EventKind.PARTICIPANT,
        EventKind.OTHER,
        EventKind.PARTICIPANT,
        EventKind.OTHER,
    ]
    assert [e.line_number for e in events] == [1, 2, 3, 4]


def test_tokenize_strips_carriage_returns():
    events = tokenize("|win|Ash\r\n")
    assert events[0].kind is EventKind.BATTLE_WON
    assert events[0].fields == ("Ash",)


def test_tokenize_is_restartable():
    events = tokenize("|turn|1\n|turn|2")
    assert isinstance(events, list)
    assert list(events) == list(events)
    assert all(isinstance(e, RawEvent) for e in events)


def test_empty_log_has_no_events():
    assert tokenize("") == []
