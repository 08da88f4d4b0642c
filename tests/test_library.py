from __future__ import annotations

import json

import pytest

from clients.library import JsonLibrary, LibraryLoadError
from core.models import Episode, LocationType, Movie

EXPORT = {
    "users": [
        {"id": "u1", "name": "alice", "trakt": {"access_token": "tok", "refresh_token": "ref",
                                                "expires_at": 1700000000}},
        {"id": "u2", "name": "bob", "trakt": None},
        {"name": "no id"},
    ],
    "items": [
        {"type": "movie", "id": "m1", "name": "Heat", "year": 1995, "path": "/movies/heat.mkv",
         "provider_ids": {"Imdb": "tt0113277", "Tmdb": 949},
         "media": {"video_height": 1080, "audio_codec": "ac3", "audio_channels": 6}},
        {"type": "episode", "id": "e1", "name": "Pilot", "path": "/tv/show/s01e01.mkv",
         "location_type": "Virtual", "parent_index_number": 1, "index_number": 1,
         "series": {"name": "Show", "year": 2019, "provider_ids": {"tvdb": "100"}}},
        {"type": "musicalbum", "id": "a1"},
    ],
    "user_data": {"u1": {"m1": {"played": True, "play_count": 2}}},
}


@pytest.fixture()
def library(tmp_path):
    path = tmp_path / "library.json"
    path.write_text(json.dumps(EXPORT), encoding="utf-8")
    return JsonLibrary(path)


def test_users_and_links(library):
    users = library.users()
    assert [u.user_id for u in users] == ["u1", "u2"]
    assert users[0].is_linked
    assert users[0].trakt.expires_at == 1700000000.0
    assert not users[1].is_linked


def test_items_are_typed(library):
    movie, episode = library.items_for(library.users()[0])
    assert isinstance(movie, Movie)
    assert movie.provider_ids == {"imdb": "tt0113277", "tmdb": "949"}
    assert movie.media.audio_channels == 6
    assert isinstance(episode, Episode)
    assert episode.location_type == LocationType.VIRTUAL
    assert episode.series.provider_ids == {"tvdb": "100"}
    assert episode.season_number == 1


def test_user_data_defaults_to_unplayed(library):
    alice, bob = library.users()
    movie, episode = library.items_for(alice)
    data = library.user_data(alice, movie)
    assert data.played and data.play_count == 2
    assert not library.user_data(alice, episode).played
    assert not library.user_data(bob, movie).played


def test_null_user_data_block_defaults_to_unplayed(tmp_path):
    path = tmp_path / "library.json"
    path.write_text(json.dumps({**EXPORT, "user_data": {"u1": None}}), encoding="utf-8")
    library = JsonLibrary(path)

    alice = library.users()[0]
    movie, _ = library.items_for(alice)
    data = library.user_data(alice, movie)
    assert not data.played
    assert data.play_count == 0


def test_unreadable_export(tmp_path):
    path = tmp_path / "library.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(LibraryLoadError):
        JsonLibrary(path)
