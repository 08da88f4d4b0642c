from __future__ import annotations

from conftest import make_episode, make_movie
from core.matching import can_sync, find_movie_match, find_show_match
from core.models import LocationType, Movie, Series, TraktMovieRecord, TraktShowRecord


def test_can_sync_filters_virtual_and_pathless():
    assert can_sync(make_movie())
    assert can_sync(make_episode())
    assert can_sync(make_movie(location_type=LocationType.REMOTE))
    assert not can_sync(make_movie(location_type=LocationType.VIRTUAL))
    assert not can_sync(make_movie(path=None))
    assert not can_sync(make_episode(path=""))
    assert not can_sync(object())


def test_movie_matches_on_any_shared_id():
    movie = Movie(item_id="m", name="Heat", path="/x", year=1995,
                  provider_ids={"imdb": "TT0113277", "tmdb": "949"})
    records = [
        TraktMovieRecord(ids={"imdb": "tt999"}),
        TraktMovieRecord(ids={"tmdb": "949", "imdb": "tt0113277"}),
    ]
    assert find_movie_match(movie, records) is records[1]


def test_movie_without_ids_matches_on_title_and_year():
    movie = Movie(item_id="m", name="  heat ", path="/x", year=1995)
    records = [
        TraktMovieRecord(ids={"imdb": "tt1"}, title="Heat", year=1986),
        TraktMovieRecord(ids={"imdb": "tt2"}, title="Heat", year=1995),
    ]
    assert find_movie_match(movie, records) is records[1]


def test_movie_with_ids_never_falls_back_to_title():
    movie = make_movie(imdb="tt42")
    records = [TraktMovieRecord(ids={"imdb": "tt1"}, title=movie.name, year=movie.year)]
    assert find_movie_match(movie, records) is None


def test_show_matches_on_tvdb():
    series = Series(name="Show", provider_ids={"tvdb": "100"})
    records = [TraktShowRecord(ids={"tvdb": "101"}), TraktShowRecord(ids={"tvdb": "100"})]
    assert find_show_match(series, records) is records[1]
    assert find_show_match(Series(name="Other", provider_ids={"tvdb": "5"}), records) is None
