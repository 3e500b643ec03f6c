from enum import StrEnum


class EventKind(StrEnum):
    PARTICIPANT = "player"
    ROSTER_REVEAL = "poke"
    ACTIVE_SWITCH = "switch"
    DRAG = "drag"
    SPECIAL_MECHANIC = "-terastallize"
    RATING_REPORT = "raw"
    BATTLE_WON = "win"
    TURN = "turn"
    MOVE = "move"
    TIER = "tier"
    BEST_OF = "uhtml"
    SHOW_TEAM = "showteam"
    OTHER = "other"


class Result(StrEnum):
    WIN = "win"
    LOSS = "loss"
    UNKNOWN = "unknown"


class MatchResult(StrEnum):
    WIN = "win"
    LOSS = "loss"
    TIE = "tie"
    INCOMPLETE = "incomplete"


class Lifecycle(StrEnum):
    REGISTERED = "registered"
    FETCHING = "fetching"
    PARSED = "parsed"
    FAILED = "failed"


FIELD_SEPARATOR = "|"

# |raw|Ash's rating: 1279 &rarr; <strong>1294</strong><br />(+15 for winning)
RATING_MARKER = "'s rating:"

BO3_TIER_MARKER = "(Bo3)"
BESTOF_TAG = "bestof"

LEAD_COUNT = 2
GAMES_TO_WIN_SERIES = 2
MAX_GAMES_PER_SERIES = 3
TOP_LEAD_PAIRS = 6
TOP_MATCHUPS = 5
MIN_MATCHUP_GAMES = 3

DEFAULT_MAX_CONCURRENT_FETCHES = 3
DEFAULT_REQUEST_DELAY_SEC = 0.25
DEFAULT_FETCH_TIMEOUT_SEC = 10.0

REPLAY_BASE_URL = "https://replay.pokemonshowdown.com"
USER_AGENT = "VsRecorder/1.0"

# storage collection keys
REPLAYS_KEY = "replays"
MATCHES_KEY = "matches"
