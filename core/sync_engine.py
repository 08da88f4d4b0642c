"""
Library Sync Task

Reconciles each linked user's local library with their Trakt.tv profile.

Per user:
1. Fetch four snapshots from Trakt: watched movies, collected movies,
   watched shows, collected shows. A failed fetch skips the user.
2. Walk the library once and classify every movie/episode into six
   buckets: collect, mark watched and mark unwatched, for movies and for
   episodes.
3. Flush each non-empty bucket with one batched call. A failed bucket is
   logged and the next one is still sent.

Progress: each user owns 100 / user_count percent. The walk consumes the
first half of that share, the flush the second half in proportion to
bucket sizes.
"""

import json
import logging
import time
from typing import Callable, Protocol, Sequence

from core.matching import can_sync, find_movie_match, find_show_match
from core.models import (
    Episode, EventType, LocalUser, MediaItem, Movie, SyncBuckets,
    SyncCancelledError, SyncResponse, SyncResult, TraktMovieRecord,
    TraktShowRecord, TraktUser, UserData,
)
from core.task import CancelSignal, LibraryProtocol, ProgressSink, TaskTrigger
from core.token_store import TokenStore

logger = logging.getLogger(__name__)


class TraktClientProtocol(Protocol):
    def get_watched_movies(self, user: TraktUser) -> list[TraktMovieRecord]: ...
    def get_collected_movies(self, user: TraktUser) -> list[TraktMovieRecord]: ...
    def get_watched_shows(self, user: TraktUser) -> list[TraktShowRecord]: ...
    def get_collected_shows(self, user: TraktUser) -> list[TraktShowRecord]: ...
    def send_library_update(self, items: Sequence[MediaItem], user: TraktUser,
                            event_type: EventType = EventType.ADD) -> list[SyncResponse]: ...
    def send_movie_playstate_updates(self, movies: Sequence[Movie], user: TraktUser,
                                     seen: bool) -> list[SyncResponse]: ...
    def send_episode_playstate_updates(self, episodes: Sequence[Episode], user: TraktUser,
                                       seen: bool) -> list[SyncResponse]: ...


class _Progress:
    """Running percentage that never moves backwards."""

    def __init__(self, sink: ProgressSink):
        self._sink = sink
        self.value = 0.0

    def advance(self, amount: float) -> None:
        self.report(self.value + amount)

    def report(self, value: float) -> None:
        value = min(100.0, value)
        if value < self.value:
            return
        self.value = value
        self._sink(value)


def _sort_key(item: MediaItem) -> tuple[bool, str]:
    if isinstance(item, Episode):
        return False, item.series_name or ""
    return True, ""


def episode_played_on_trakt(episode: Episode, show: TraktShowRecord | None) -> bool:
    """True iff the matched show has a play for this season/episode number."""
    if show is None or not show.seasons:
        return False
    return any(
        season.number == episode.season_number
        and season.episodes
        and any(e.number == episode.index_number and e.plays > 0 for e in season.episodes)
        for season in show.seasons
    )


def episode_collected_on_trakt(episode: Episode, show: TraktShowRecord | None) -> bool:
    if show is None or not show.seasons:
        return False
    season = show.season(episode.parent_index_number)
    if season is None:
        return False
    return any(e.number == episode.index_number for e in season.episodes)


class LibrarySyncTask:
    """Syncs each linked user's local library to their trakt.tv profile."""

    name = "Sync library to trakt.tv"
    key = "TraktSyncLibraryTask"
    category = "Trakt"
    description = "Adds any media that is in each users trakt monitored locations to their trakt.tv profile"

    def __init__(self, library: LibraryProtocol, trakt: TraktClientProtocol,
                 tokens: TokenStore | None = None):
        self._library = library
        self._trakt = trakt
        self._tokens = tokens

    def default_triggers(self) -> list[TaskTrigger]:
        return []

    def _linked_users(self) -> list[LocalUser]:
        users = [u for u in self._library.users() if u.is_linked]
        if self._tokens is not None:
            for user in users:
                self._tokens.apply(user.trakt)
        return users

    def execute(self, progress: ProgressSink, cancel: CancelSignal) -> SyncResult:
        """Run a full sync. Raises SyncCancelledError when cancelled."""
        start = time.time()
        users = self._linked_users()
        result = SyncResult(success=True)

        if not users:
            logger.info("No linked users, nothing to sync")
            return result

        tracker = _Progress(progress)
        percent_per_user = 100.0 / len(users)

        for index, user in enumerate(users):
            if self._sync_user(user, index * percent_per_user, percent_per_user, tracker, cancel, result):
                result.users_synced += 1

        result.duration = time.time() - start
        result.success = not result.errors
        logger.info(f"Library sync finished in {result.duration:.1f}s for {result.users_synced} user(s)")
        return result

    def _fetch_snapshots(self, trakt_user: TraktUser):
        # Watched snapshots keep us from endlessly incrementing play counts on trakt.tv
        watched_movies = self._trakt.get_watched_movies(trakt_user)
        collected_movies = self._trakt.get_collected_movies(trakt_user)
        watched_shows = self._trakt.get_watched_shows(trakt_user)
        collected_shows = self._trakt.get_collected_shows(trakt_user)
        return watched_movies, collected_movies, watched_shows, collected_shows

    def _sync_user(self, user: LocalUser, user_start: float, percent_per_user: float,
                   tracker: _Progress, cancel: CancelSignal, result: SyncResult) -> bool:
        """Sync one user. Returns False when the trakt.tv snapshots could not be fetched."""
        trakt_user = user.trakt
        logger.info(f"Syncing library for '{user.name}'")

        try:
            watched_movies, collected_movies, watched_shows, collected_shows = \
                self._fetch_snapshots(trakt_user)
        except Exception as e:
            logger.error(f"Failed to fetch trakt.tv state for '{user.name}': {e}")
            result.errors.append(f"{user.name}: {e}")
            tracker.report(user_start + percent_per_user)
            return False

        items = sorted(
            (i for i in self._library.items_for(user) if can_sync(i)),
            key=_sort_key,
        )

        if not items:
            logger.info(f"No trakt media found for '{user.name}'. Have trakt locations been configured?")
            tracker.report(user_start + percent_per_user)
            return True

        half_share = percent_per_user / 2.0
        percent_per_item = half_share / len(items)
        buckets = SyncBuckets()

        for item in items:
            if cancel.is_set():
                raise SyncCancelledError(f"Sync cancelled while processing '{user.name}'")

            user_data = self._library.user_data(user, item)
            match item:
                case Movie():
                    self._classify_movie(item, user_data, watched_movies, collected_movies, buckets)
                case Episode():
                    self._classify_episode(item, user_data, watched_shows, collected_shows, buckets)

            tracker.advance(percent_per_item)

        tracker.report(user_start + half_share)
        self._flush(buckets, trakt_user, user_start + half_share, half_share, tracker, cancel, result)
        tracker.report(user_start + percent_per_user)
        return True

    def _classify_movie(self, movie: Movie, user_data: UserData | None,
                        watched: list[TraktMovieRecord], collected: list[TraktMovieRecord],
                        buckets: SyncBuckets) -> None:
        collected_movie = find_movie_match(movie, collected)
        if collected_movie is None or collected_movie.metadata.is_empty():
            buckets.movies_to_collect.append(movie)

        user_data = user_data or UserData()
        watched_movie = find_movie_match(movie, watched)
        if user_data.played:
            if watched_movie is None or watched_movie.plays < user_data.play_count:
                buckets.movies_played.append(movie)
        elif watched_movie is not None:
            buckets.movies_unplayed.append(movie)

    def _classify_episode(self, episode: Episode, user_data: UserData | None,
                          watched: list[TraktShowRecord], collected: list[TraktShowRecord],
                          buckets: SyncBuckets) -> None:
        played_on_trakt = episode_played_on_trakt(episode, find_show_match(episode.series, watched))

        if user_data is not None:
            if user_data.played and not played_on_trakt:
                buckets.episodes_played.append(episode)
            elif not user_data.played and played_on_trakt:
                buckets.episodes_unplayed.append(episode)

        if not episode_collected_on_trakt(episode, find_show_match(episode.series, collected)):
            buckets.episodes_to_collect.append(episode)

    def _flush(self, buckets: SyncBuckets, trakt_user: TraktUser, base: float, share: float,
               tracker: _Progress, cancel: CancelSignal, result: SyncResult) -> None:
        total = buckets.total()
        plan: list[tuple[str, list, str, Callable[[], list[SyncResponse]]]] = [
            ("Movies to add to collection", buckets.movies_to_collect, "movies_collected",
             lambda: self._trakt.send_library_update(buckets.movies_to_collect, trakt_user, EventType.ADD)),
            ("Movies to set watched", buckets.movies_played, "movies_watched",
             lambda: self._trakt.send_movie_playstate_updates(buckets.movies_played, trakt_user, True)),
            ("Movies to set unwatched", buckets.movies_unplayed, "movies_unwatched",
             lambda: self._trakt.send_movie_playstate_updates(buckets.movies_unplayed, trakt_user, False)),
            ("Episodes to add to collection", buckets.episodes_to_collect, "episodes_collected",
             lambda: self._trakt.send_library_update(buckets.episodes_to_collect, trakt_user, EventType.ADD)),
            ("Episodes to set watched", buckets.episodes_played, "episodes_watched",
             lambda: self._trakt.send_episode_playstate_updates(buckets.episodes_played, trakt_user, True)),
            ("Episodes to set unwatched", buckets.episodes_unplayed, "episodes_unwatched",
             lambda: self._trakt.send_episode_playstate_updates(buckets.episodes_unplayed, trakt_user, False)),
        ]

        sent = 0
        for label, items, counter, send in plan:
            logger.debug(f"{label}: {len(items)}")
            if not items:
                continue
            if cancel.is_set():
                raise SyncCancelledError("Sync cancelled before sending updates")

            try:
                for response in send() or []:
                    self._log_response(response)
                setattr(result, counter, getattr(result, counter) + len(items))
            except (ValueError, TypeError) as e:
                logger.error(f"Invalid arguments sending '{label}' to trakt.tv: {e}")
                result.errors.append(f"{label}: {e}")
            except Exception as e:
                logger.exception(f"Error sending '{label}' to trakt.tv: {e}")
                result.errors.append(f"{label}: {e}")

            sent += len(items)
            tracker.report(base + share * sent / total)

    def _log_response(self, response: SyncResponse) -> None:
        logger.debug(f"TraktResponse Added Movies: {response.added.movies}")
        logger.debug(f"TraktResponse Added Shows: {response.added.shows}")
        logger.debug(f"TraktResponse Added Seasons: {response.added.seasons}")
        logger.debug(f"TraktResponse Added Episodes: {response.added.episodes}")
        not_found = response.not_found
        for entry in not_found.movies + not_found.shows + not_found.seasons + not_found.episodes:
            logger.error(f"TraktResponse not found: {json.dumps(entry, default=str)}")
