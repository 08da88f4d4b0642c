"""Matching of local library items against Trakt snapshot records."""

from typing import Iterable, TypeVar

from core.models import (
    Episode, LocationType, MediaItem, Movie, Series,
    TraktMovieRecord, TraktShowRecord,
)

MOVIE_ID_KEYS = ("imdb", "tmdb", "trakt", "slug")
SHOW_ID_KEYS = ("tvdb", "imdb", "tmdb", "trakt", "slug")

R = TypeVar("R", TraktMovieRecord, TraktShowRecord)


def can_sync(item: MediaItem) -> bool:
    """Only real movie and episode files are synced."""
    if not isinstance(item, (Movie, Episode)):
        return False
    if not item.path:
        return False
    return item.location_type != LocationType.VIRTUAL


def _normalize(s: str) -> str:
    return " ".join(s.lower().split())


def _ids_intersect(local: dict[str, str], remote: dict[str, str], keys: tuple[str, ...]) -> bool:
    for key in keys:
        mine = local.get(key)
        theirs = remote.get(key)
        if mine in (None, "") or theirs in (None, ""):
            continue
        if str(mine).strip().lower() == str(theirs).strip().lower():
            return True
    return False


def _find(ids: dict[str, str], name: str, year: int | None,
          records: Iterable[R], keys: tuple[str, ...]) -> R | None:
    has_ids = any(ids.get(k) for k in keys)
    for record in records:
        if has_ids:
            if _ids_intersect(ids, record.ids, keys):
                return record
        elif _normalize(record.title) == _normalize(name) and record.year == year:
            return record
    return None


def find_movie_match(movie: Movie, records: Iterable[TraktMovieRecord]) -> TraktMovieRecord | None:
    return _find(movie.provider_ids, movie.name, movie.year, records, MOVIE_ID_KEYS)


def find_show_match(series: Series, records: Iterable[TraktShowRecord]) -> TraktShowRecord | None:
    return _find(series.provider_ids, series.name, series.year, records, SHOW_ID_KEYS)
