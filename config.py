import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from constants import (
    DEFAULT_FETCH_TIMEOUT_SEC,
    DEFAULT_MAX_CONCURRENT_FETCHES,
    DEFAULT_REQUEST_DELAY_SEC,
    REPLAY_BASE_URL,
)

DEFAULT_STORE_PATH = "vs_recorder.json"


class CustomFormatter(logging.Formatter):
    def format(self, record):
        return "{:<8} {}".format(record.levelname, record.getMessage())


class CustomRotatingFileHandler(RotatingFileHandler):
    # 10MB per file, three backups, all under logs/
    def __init__(self, file_name, maxBytes=10*1024*1024, backupCount=3, base_dir="logs", **kwargs):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)

        super().__init__(
            "{}/{}".format(self.base_dir, file_name),
            maxBytes=maxBytes,
            backupCount=backupCount,
            **kwargs
        )


def init_logging(level, log_to_file):
    aiohttp_logger = logging.getLogger("aiohttp")
    aiohttp_logger.setLevel(logging.INFO)
    requests_logger = logging.getLogger("urllib3")
    requests_logger.setLevel(logging.INFO)

    # Gets the root logger to set handlers/formatters
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.setFormatter(CustomFormatter())
    logger.addHandler(stdout_handler)
    VsRecorderConfig.stdout_log_handler = stdout_handler

    if log_to_file:
        file_handler = CustomRotatingFileHandler("vs_recorder.log")
        file_handler.setLevel(logging.DEBUG)  # file logs are always debug
        file_handler.setFormatter(CustomFormatter())
        logger.addHandler(file_handler)
        VsRecorderConfig.file_log_handler = file_handler


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _split_names(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [name.strip() for name in raw.split(",") if name.strip()]


class _VsRecorderConfig:
    known_user_names: list[str] = []
    max_concurrent_fetches: int = DEFAULT_MAX_CONCURRENT_FETCHES
    request_delay_sec: float = DEFAULT_REQUEST_DELAY_SEC
    fetch_timeout_sec: float = DEFAULT_FETCH_TIMEOUT_SEC
    store_path: str = DEFAULT_STORE_PATH
    replay_base_url: str = REPLAY_BASE_URL
    team_id: Optional[str] = None
    log_level: str = "INFO"
    log_to_file: bool = False
    stdout_log_handler: logging.StreamHandler
    file_log_handler: Optional[CustomRotatingFileHandler] = None

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Import Pokemon Showdown replays and report team usage"
        )
        parser.add_argument(
            "--known-users",
            default=os.getenv("VSR_KNOWN_USERS", ""),
            help="Comma-separated Showdown names that belong to you (case-insensitive)",
        )
        parser.add_argument(
            "--max-concurrent-fetches",
            type=int,
            default=_env_int("VSR_MAX_CONCURRENT_FETCHES", DEFAULT_MAX_CONCURRENT_FETCHES),
            help="Maximum number of replays fetched at the same time",
        )
        parser.add_argument(
            "--request-delay-ms",
            type=float,
            default=_env_float("VSR_REQUEST_DELAY_MS", DEFAULT_REQUEST_DELAY_SEC * 1000),
            help="Minimum spacing between request starts, in milliseconds",
        )
        parser.add_argument(
            "--fetch-timeout-sec",
            type=float,
            default=_env_float("VSR_FETCH_TIMEOUT_SEC", DEFAULT_FETCH_TIMEOUT_SEC),
            help="Give up on a single replay after this many seconds",
        )
        parser.add_argument(
            "--store-path",
            default=os.getenv("VSR_STORE_PATH") or DEFAULT_STORE_PATH,
            help="JSON file the parsed history is kept in",
        )
        parser.add_argument(
            "--replay-base-url",
            default=os.getenv("VSR_REPLAY_BASE_URL") or REPLAY_BASE_URL,
        )
        parser.add_argument("--team-id", default=None, help="Team the replays belong to")
        parser.add_argument(
            "--log-level", default=os.getenv("VSR_LOG_LEVEL") or "INFO", help="Python logging level"
        )
        parser.add_argument(
            "--log-to-file",
            action="store_true",
            help="When enabled, DEBUG logs will be written to a file in the logs/ directory",
        )

        commands = parser.add_subparsers(dest="command", required=True)
        import_cmd = commands.add_parser("import", help="Fetch and parse replays")
        import_cmd.add_argument(
            "source",
            nargs="?",
            default="-",
            help="File with replay URLs (any text, one or more per line); '-' reads stdin",
        )
        stats_cmd = commands.add_parser("stats", help="Match summary and usage for stored games")
        stats_cmd.add_argument(
            "--roster",
            default="",
            help="Comma-separated team roster; defaults to every species the user picked",
        )
        stats_cmd.add_argument(
            "--against",
            default="",
            help="Comma-separated opponent Pokemon; adds the record against teams carrying them",
        )
        stats_cmd.add_argument("--json", action="store_true", help="Print JSON instead of tables")
        inspect_cmd = commands.add_parser("inspect", help="Fetch one replay and print the record")
        inspect_cmd.add_argument("reference")
        return parser

    def configure(self, argv=None) -> argparse.Namespace:
        args = self.build_parser().parse_args(argv)
        self.known_user_names = _split_names(args.known_users)
        self.max_concurrent_fetches = args.max_concurrent_fetches
        self.request_delay_sec = args.request_delay_ms / 1000.0
        self.fetch_timeout_sec = args.fetch_timeout_sec
        self.store_path = args.store_path
        self.replay_base_url = args.replay_base_url
        self.team_id = args.team_id
        self.log_level = args.log_level
        self.log_to_file = args.log_to_file
        return args

    def validate_config(self):
        if self.max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be at least 1")
        if self.request_delay_sec < 0:
            raise ValueError("request delay cannot be negative")
        if self.fetch_timeout_sec <= 0:
            raise ValueError("fetch timeout must be positive")


VsRecorderConfig = _VsRecorderConfig()
