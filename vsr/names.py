"""
Species name handling for Showdown logs.

Showdown writes species with trailing details ("Pikachu, L50, M"), uses
wildcard formes in team preview ("Urshifu-*") and appends in-battle forme
suffixes on switch-in ("Ogerpon-Hearthflame-Tera"). Everything that turns
those tokens into stable keys lives here as explicit tables.
"""

import re
from typing import Iterable, List, Optional

WILDCARD_SUFFIX = "-*"

# In-battle formes that should count as the roster entry they came from.
# Keyed by lower-cased usage key, valued by the canonical usage key.
FORME_COLLAPSE = {
    "terapagos-terastal": "terapagos",
    "terapagos-stellar": "terapagos",
    "ogerpon-teal-tera": "ogerpon",
    "ogerpon-tera": "ogerpon",
    "ogerpon-hearthflame-tera": "ogerpon-hearthflame",
    "ogerpon-wellspring-tera": "ogerpon-wellspring",
    "ogerpon-cornerstone-tera": "ogerpon-cornerstone",
    "palafin-hero": "palafin",
    "morpeko-hangry": "morpeko",
    "meloetta-pirouette": "meloetta",
    "cherrim-sunshine": "cherrim",
    "castform-sunny": "castform",
    "castform-rainy": "castform",
    "castform-snowy": "castform",
    "zygarde-complete": "zygarde",
    "greninja-ash": "greninja-bond",
    "darmanitan-zen": "darmanitan",
    "darmanitan-galar-zen": "darmanitan-galar",
}

# Multi-form species where every form is the same team slot.
# Any key starting with one of these collapses to it.
FORME_FAMILIES = ("terapagos",)

_GENDER_SUFFIX = re.compile(r"\s*\(\s*[MF]\s*\)\s*$")


def strip_details(token: str) -> str:
    """'Pikachu, L50, M' -> 'Pikachu'"""
    if not token:
        return ""
    name = token.split(",", 1)[0]
    name = _GENDER_SUFFIX.sub("", name)
    return name.strip()


def usage_key(name: str) -> str:
    """Lower-case key used to compare roster entries with picks."""
    key = strip_details(name).lower().replace(" ", "-")
    if key.endswith(WILDCARD_SUFFIX):
        key = key[: -len(WILDCARD_SUFFIX)]
    key = FORME_COLLAPSE.get(key, key)
    for family in FORME_FAMILIES:
        if key.startswith(family):
            return family
    return key


def is_wildcard(name: str) -> bool:
    return name.endswith(WILDCARD_SUFFIX)


def wildcard_base(name: str) -> str:
    return name[: -len(WILDCARD_SUFFIX)] if is_wildcard(name) else name


def resolve_wildcard(roster: List[str], species: str) -> bool:
    """
    Replace the first wildcard roster entry that ``species`` is a forme of.
    Returns True when an entry was replaced.
    """
    for i, entry in enumerate(roster):
        if is_wildcard(entry) and species.startswith(wildcard_base(entry)):
            roster[i] = species
            return True
    return False


def resolve_to_roster_entry(roster: Optional[Iterable[str]], species: str) -> str:
    """
    Map a switch-in species back onto the roster entry it belongs to.

    "Ogerpon-Hearthflame-Tera" resolves to a roster "Ogerpon-Hearthflame".
    A different forme of a wildcard entry stays as the specific forme.
    """
    if roster is None:
        return species
    entries = list(roster)
    if species in entries:
        return species
    for entry in entries:
        if species.startswith(entry + "-"):
            return entry
    return species
