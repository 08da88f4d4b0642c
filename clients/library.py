"""Media server library export reader"""

import json
import logging
from pathlib import Path

from core.models import (
    Episode, LocalUser, LocationType, MediaInfo, MediaItem, Movie, Series,
    TraktUser, UserData,
)

logger = logging.getLogger(__name__)


class LibraryLoadError(Exception):
    pass


def _ids(data: dict | None) -> dict[str, str]:
    return {str(k).lower(): str(v) for k, v in (data or {}).items() if v not in (None, "")}


def _location(value: str | None) -> LocationType:
    try:
        return LocationType((value or "filesystem").lower())
    except ValueError:
        return LocationType.FILESYSTEM


def _media(data: dict | None) -> MediaInfo:
    data = data or {}
    return MediaInfo(
        video_height=data.get("video_height"),
        audio_codec=data.get("audio_codec"),
        audio_channels=data.get("audio_channels"),
        is_3d=bool(data.get("is_3d", False)),
    )


class JsonLibrary:
    """Library, users and play state exported by the media server as JSON."""

    def __init__(self, library_file: Path):
        try:
            data = json.loads(library_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise LibraryLoadError(f"Cannot read library export {library_file}: {e}")

        self._users = [u for u in (self._extract_user(x) for x in data.get("users", [])) if u]
        self._items = [i for i in (self._extract_item(x) for x in data.get("items", [])) if i]
        self._user_data = data.get("user_data", {}) or {}
        logger.info(f"Loaded {len(self._items)} items for {len(self._users)} users")

    def _extract_user(self, data: dict) -> LocalUser | None:
        user_id = data.get("id")
        if not user_id:
            return None

        trakt = None
        link = data.get("trakt")
        if link and link.get("access_token"):
            trakt = TraktUser(
                linked_user_id=str(link.get("linked_user_id") or user_id),
                access_token=link["access_token"],
                refresh_token=link.get("refresh_token", ""),
                expires_at=float(link.get("expires_at", 0) or 0),
                username=link.get("username", ""),
            )
        return LocalUser(user_id=str(user_id), name=data.get("name", str(user_id)), trakt=trakt)

    def _extract_item(self, data: dict) -> MediaItem | None:
        kind = (data.get("type") or "").lower()
        item_id = data.get("id")
        if not item_id:
            return None

        common = dict(
            item_id=str(item_id),
            name=data.get("name", ""),
            path=data.get("path"),
            year=data.get("year"),
            location_type=_location(data.get("location_type")),
            provider_ids=_ids(data.get("provider_ids")),
            media=_media(data.get("media")),
        )

        if kind == "movie":
            return Movie(**common)

        if kind == "episode":
            series = data.get("series") or {}
            return Episode(
                series=Series(
                    name=series.get("name", ""),
                    year=series.get("year"),
                    provider_ids=_ids(series.get("provider_ids")),
                ),
                index_number=data.get("index_number"),
                parent_index_number=data.get("parent_index_number"),
                season_index=data.get("season_index"),
                index_number_end=data.get("index_number_end"),
                **common,
            )

        logger.debug(f"Skipping unsupported item type '{kind}': {item_id}")
        return None

    def users(self) -> list[LocalUser]:
        return list(self._users)

    def items_for(self, user: LocalUser) -> list[MediaItem]:
        return list(self._items)

    def user_data(self, user: LocalUser, item: MediaItem) -> UserData | None:
        entry = (self._user_data.get(user.user_id) or {}).get(item.user_data_key)
        if entry is None:
            return UserData()

        return UserData(
            played=bool(entry.get("played", False)),
            play_count=int(entry.get("play_count", 0) or 0),
        )
