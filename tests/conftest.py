from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from core.models import (  # noqa: E402
    Episode, LocalUser, Movie, Series, TraktUser, UserData,
)


class FakeLibrary:
    """In-memory stand-in for the media server's library and user data."""

    def __init__(self, users: list[LocalUser], items: list, user_data: dict | None = None):
        self._users = users
        self._items = items
        self._user_data = user_data or {}

    def users(self) -> list[LocalUser]:
        return list(self._users)

    def items_for(self, user: LocalUser) -> list:
        return list(self._items)

    def user_data(self, user: LocalUser, item) -> UserData | None:
        return self._user_data.get((user.user_id, item.item_id), UserData())


def make_user(user_id: str = "u1", linked: bool = True) -> LocalUser:
    trakt = TraktUser(linked_user_id=user_id, access_token="token") if linked else None
    return LocalUser(user_id=user_id, name=f"user-{user_id}", trakt=trakt)


def make_movie(item_id: str = "m1", imdb: str = "tt0000001", **kwargs) -> Movie:
    kwargs.setdefault("path", f"/media/movies/{item_id}.mkv")
    return Movie(item_id=item_id, name=f"Movie {item_id}", year=2020,
                 provider_ids={"imdb": imdb}, **kwargs)


def make_episode(item_id: str = "e1", season: int = 1, number: int = 1,
                 tvdb: str = "100", series_name: str = "Show", **kwargs) -> Episode:
    kwargs.setdefault("path", f"/media/tv/{item_id}.mkv")
    return Episode(
        item_id=item_id,
        name=f"Episode {item_id}",
        series=Series(name=series_name, year=2019, provider_ids={"tvdb": tvdb}),
        parent_index_number=season,
        index_number=number,
        **kwargs,
    )


@pytest.fixture()
def cancel() -> threading.Event:
    return threading.Event()
