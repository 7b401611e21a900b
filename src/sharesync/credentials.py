"""Session cookie lookup."""

import logging

from . import db
from .config import Config
from .errors import NoCredential

logger = logging.getLogger("sharesync.credentials")


def get_credential(config: Config, owner_id: str | None = None) -> str | None:
    """
    Return the 115 cookie for ``owner_id``.

    A cookie stored in user_settings wins; otherwise the configured fallback
    (environment or config file) is used. Read fresh on every call so a
    cookie updated between cycles takes effect immediately.
    """
    owner_id = owner_id if owner_id is not None else config.cloud115.owner_id
    if owner_id and config.db_path.exists():
        with db.get_db(config.db_path) as conn:
            setting = db.get_user_setting(conn, owner_id)
        if setting and setting.cloud115_cookie:
            return setting.cloud115_cookie
    return config.fallback_cookie or None


def require_credential(config: Config, owner_id: str | None = None) -> str:
    cookie = get_credential(config, owner_id)
    if not cookie:
        raise NoCredential(
            f"No 115 cookie configured for owner {owner_id or config.cloud115.owner_id or '(default)'}"
        )
    return cookie
