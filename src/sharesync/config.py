"""Configuration loading for sharesync."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import tomli

logger = logging.getLogger("sharesync.config")

COOKIE_ENV_VAR = "SHARESYNC_115_COOKIE"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"           # INFO or DEBUG
    output: str = "console"       # console, file, or both
    file: str = ""                # log file path
    rotate: bool = True           # enable rotation
    max_size_mb: int = 10         # max file size before rotation
    backup_count: int = 5         # rotated files to keep


@dataclass
class Cloud115Config:
    webapi_url: str = "https://webapi.115.com"
    web_url: str = "https://115.com"
    cookie: str = ""              # fallback credential when owner has none stored
    owner_id: str = ""            # user_settings row whose cookie the scheduler uses
    timeout: float = 15.0
    page_size: int = 1000         # entries per listing/snapshot page
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )


@dataclass
class PathsConfig:
    create_missing: bool = True   # False = lookup-only resolution


@dataclass
class MonitorConfig:
    enabled: bool = True
    interval: int = 600           # seconds between reconciliation cycles
    poll_interval: int = 5        # daemon loop tick
    max_workers: int = 4          # concurrent task reconciliations per cycle


@dataclass
class NotificationsConfig:
    surface: str = "telegram"     # "telegram" or "ntfy"


@dataclass
class TelegramConfig:
    bot_token: str = ""
    api_url: str = "https://api.telegram.org"


@dataclass
class NtfyConfig:
    """ntfy push notification configuration."""
    server_url: str = "https://ntfy.sh"
    token: str = ""       # bearer token auth
    priority: int = 3


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path("data/sharesync.db"))
    cloud115: Cloud115Config = field(default_factory=Cloud115Config)
    paths: PathsConfig = field(default_factory=PathsConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    ntfy: NtfyConfig = field(default_factory=NtfyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def fallback_cookie(self) -> str:
        """Cookie from the environment, else from the config file."""
        return os.environ.get(COOKIE_ENV_VAR, "") or self.cloud115.cookie


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file."""
    if config_path is None:
        # Look for config in standard locations
        candidates = [
            Path("config/config.toml"),
            Path.home() / ".config/sharesync/config.toml",
            Path("/etc/sharesync/config.toml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None or not config_path.exists():
        # Return default config
        return Config()

    with open(config_path, "rb") as f:
        data = tomli.load(f)

    config = Config()

    if "db_path" in data:
        config.db_path = Path(data["db_path"])

    if "cloud115" in data:
        c = data["cloud115"]
        defaults = Cloud115Config()
        config.cloud115 = Cloud115Config(
            webapi_url=c.get("webapi_url", defaults.webapi_url),
            web_url=c.get("web_url", defaults.web_url),
            cookie=c.get("cookie", ""),
            owner_id=str(c.get("owner_id", "")),
            timeout=float(c.get("timeout", defaults.timeout)),
            page_size=c.get("page_size", defaults.page_size),
            user_agent=c.get("user_agent", defaults.user_agent),
        )

    if "paths" in data:
        config.paths = PathsConfig(
            create_missing=data["paths"].get("create_missing", True),
        )

    if "monitor" in data:
        m = data["monitor"]
        config.monitor = MonitorConfig(
            enabled=m.get("enabled", True),
            interval=m.get("interval", 600),
            poll_interval=m.get("poll_interval", 5),
            max_workers=m.get("max_workers", 4),
        )

    if "notifications" in data:
        config.notifications = NotificationsConfig(
            surface=data["notifications"].get("surface", "telegram"),
        )

    if "telegram" in data:
        tg = data["telegram"]
        config.telegram = TelegramConfig(
            bot_token=tg.get("bot_token", ""),
            api_url=tg.get("api_url", "https://api.telegram.org"),
        )

    if "ntfy" in data:
        ntfy = data["ntfy"]
        config.ntfy = NtfyConfig(
            server_url=ntfy.get("server_url", "https://ntfy.sh"),
            token=ntfy.get("token", ""),
            priority=ntfy.get("priority", 3),
        )

    if "logging" in data:
        log = data["logging"]
        config.logging = LoggingConfig(
            level=log.get("level", "INFO"),
            output=log.get("output", "console"),
            file=log.get("file", ""),
            rotate=log.get("rotate", True),
            max_size_mb=log.get("max_size_mb", 10),
            backup_count=log.get("backup_count", 5),
        )

    if config.monitor.max_workers < 1:
        logger.warning(
            "monitor.max_workers=%d is invalid, using 1", config.monitor.max_workers,
        )
        config.monitor.max_workers = 1

    return config
