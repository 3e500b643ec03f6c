from vsr.names import (
    is_wildcard,
    resolve_to_roster_entry,
    resolve_wildcard,
    strip_details,
    usage_key,
    wildcard_base,
)


def test_strip_details_drops_level_and_gender():
    assert strip_details("Pikachu, L50, M") == "Pikachu"
    assert strip_details("Flutter Mane, L50") == "Flutter Mane"
    assert strip_details("Amoonguss") == "Amoonguss"
    assert strip_details("") == ""


def test_usage_key_lowercases_and_joins_words():
    assert usage_key("Iron Hands") == "iron-hands"
    assert usage_key("Pikachu, L50, F") == "pikachu"


def test_usage_key_collapses_terapagos_forms():
    assert usage_key("Terapagos") == "terapagos"
    assert usage_key("Terapagos-Terastal") == "terapagos"
    assert usage_key("Terapagos-Stellar") == "terapagos"


def test_usage_key_collapses_tera_masks_to_their_form():
    assert usage_key("Ogerpon-Hearthflame-Tera") == "ogerpon-hearthflame"
    assert usage_key("Ogerpon-Teal-Tera") == "ogerpon"


def test_usage_key_drops_wildcard_suffix():
    assert usage_key("Urshifu-*") == "urshifu"


def test_wildcard_helpers():
    assert is_wildcard("Urshifu-*")
    assert not is_wildcard("Urshifu")
    assert wildcard_base("Urshifu-*") == "Urshifu"
    assert wildcard_base("Urshifu") == "Urshifu"


def test_resolve_wildcard_replaces_first_match_only():
    roster = ["Amoonguss", "Urshifu-*", "Urshifu-*"]
    assert resolve_wildcard(roster, "Urshifu-Rapid-Strike") is True
    assert roster == ["Amoonguss", "Urshifu-Rapid-Strike", "Urshifu-*"]


def test_resolve_wildcard_without_match():
    roster = ["Amoonguss"]
    assert resolve_wildcard(roster, "Incineroar") is False
    assert roster == ["Amoonguss"]


def test_resolve_to_roster_entry():
    roster = ["Ogerpon-Hearthflame", "Incineroar"]
    assert resolve_to_roster_entry(roster, "Ogerpon-Hearthflame-Tera") == "Ogerpon-Hearthflame"
    assert resolve_to_roster_entry(roster, "Incineroar") == "Incineroar"
    assert resolve_to_roster_entry(roster, "Rillaboom") == "Rillaboom"
    assert resolve_to_roster_entry(None, "Rillaboom") == "Rillaboom"
