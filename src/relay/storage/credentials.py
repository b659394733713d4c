"""Per-user integration credentials.

Workflows reference credentials by platform name (``{{user.openai}}`` or
just ``{{openai}}``). A user may have stored the same secret under a
provider-specific id (``youtube_apikey``, ``slack_oauth``), so ``load``
fans each stored value out to every alias of its platform.

Values are stored as given; an optional ``decrypt`` callable is applied
on read so callers can plug in their own secret encryption.

Loading never fails a run: on any storage or decrypt error the store logs
and returns an empty mapping.
"""

from __future__ import annotations

from collections.abc import Callable

from relay.core.logging import get_logger
from relay.core.timestamps import utc_now_iso
from relay.storage.base import BaseRepository

logger = get_logger(__name__)

PLATFORM_ALIASES: dict[str, tuple[str, ...]] = {
    "youtube": ("youtube_apikey", "youtube"),
    "twitter": ("twitter_oauth2", "twitter"),
    "github": ("github_oauth", "github"),
    "google-sheets": ("googlesheets", "googlesheets_oauth"),
    "googlesheets": ("googlesheets", "googlesheets_oauth"),
    "google-calendar": ("googlecalendar", "googlecalendar_serviceaccount"),
    "googlecalendar": ("googlecalendar", "googlecalendar_serviceaccount"),
    "notion": ("notion_oauth", "notion"),
    "airtable": ("airtable_oauth", "airtable"),
    "hubspot": ("hubspot_oauth", "hubspot"),
    "salesforce": ("salesforce_jwt", "salesforce"),
    "slack": ("slack_oauth", "slack"),
    "discord": ("discord_oauth", "discord"),
    "stripe": ("stripe_connect", "stripe"),
}


def expand_aliases(
    credentials: dict[str, str],
    aliases: dict[str, tuple[str, ...]] = PLATFORM_ALIASES,
) -> dict[str, str]:
    """Copy each platform's first stored credential to its missing aliases."""
    expanded = dict(credentials)
    for platform, ids in aliases.items():
        source = next((name for name in ids if expanded.get(name)), None)
        if source is None:
            continue
        for name in (platform, *ids):
            if not expanded.get(name):
                expanded[name] = expanded[source]
    return expanded


class CredentialStore(BaseRepository):
    """CRUD for the ``credentials`` table."""

    TABLE = "credentials"

    def __init__(self, conn, decrypt: Callable[[str], str] | None = None) -> None:
        super().__init__(conn)
        self.decrypt = decrypt

    def put(self, user_id: str, platform: str, value: str) -> None:
        with self.conn.transaction():
            self.execute(
                f"""
                INSERT INTO {self.TABLE} (user_id, platform, value, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id, platform) DO UPDATE SET value = excluded.value
                """,
                (user_id, platform, value, utc_now_iso()),
            )

    def delete(self, user_id: str, platform: str) -> bool:
        with self.conn.transaction():
            cursor = self.execute(
                f"DELETE FROM {self.TABLE} WHERE user_id = ? AND platform = ?",
                (user_id, platform),
            )
            return cursor.rowcount > 0

    def platforms(self, user_id: str) -> list[str]:
        rows = self.query(
            f"SELECT platform FROM {self.TABLE} WHERE user_id = ? ORDER BY platform", (user_id,)
        )
        return [row["platform"] for row in rows]

    def load(self, user_id: str) -> dict[str, str]:
        """Decrypted platform → secret map for one user, aliases expanded."""
        try:
            rows = self.query(
                f"SELECT platform, value FROM {self.TABLE} WHERE user_id = ?", (user_id,)
            )
            credentials: dict[str, str] = {}
            for row in rows:
                value = row["value"]
                if self.decrypt is not None:
                    value = self.decrypt(value)
                if value:
                    credentials[row["platform"]] = value
            expanded = expand_aliases(credentials)
        except Exception as exc:
            logger.error("credentials.load_failed", user_id=user_id, error=str(exc))
            return {}

        logger.debug("credentials.loaded", user_id=user_id, platforms=sorted(expanded))
        return expanded


__all__ = ["CredentialStore", "PLATFORM_ALIASES", "expand_aliases"]
