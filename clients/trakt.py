"""
Trakt.tv API Client

Fetches a user's watched and collected snapshots and sends batched
collection and history updates. Handles OAuth token refresh and retries
rate-limited or transient failures.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

import requests

from core.matching import MOVIE_ID_KEYS, SHOW_ID_KEYS
from core.models import (
    CollectionMetadata, Episode, EventType, MediaInfo, MediaItem, Movie,
    SyncResponse, TraktEpisodeRecord, TraktMovieRecord, TraktSeason,
    TraktShowRecord, TraktUser,
)
from core.token_store import TokenStore

logger = logging.getLogger(__name__)

BASE_URL = "https://api.trakt.tv"
TOKEN_URL = f"{BASE_URL}/oauth/token"
URL_WATCHED_MOVIES = f"{BASE_URL}/sync/watched/movies"
URL_COLLECTED_MOVIES = f"{BASE_URL}/sync/collection/movies"
URL_WATCHED_SHOWS = f"{BASE_URL}/sync/watched/shows"
URL_COLLECTED_SHOWS = f"{BASE_URL}/sync/collection/shows"
URL_COLLECTION_ADD = f"{BASE_URL}/sync/collection"
URL_COLLECTION_REMOVE = f"{BASE_URL}/sync/collection/remove"
URL_HISTORY_ADD = f"{BASE_URL}/sync/history"
URL_HISTORY_REMOVE = f"{BASE_URL}/sync/history/remove"

REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"
USER_AGENT = "TraktLibrarySync/1.0"
CHUNK_SIZE = 100
REFRESH_MARGIN = 300  # seconds before expiry
TIMEOUT = 30

RESOLUTIONS = (
    (2160, "uhd_4k"),
    (1080, "hd_1080p"),
    (720, "hd_720p"),
    (576, "sd_576p"),
    (480, "sd_480p"),
)

AUDIO_CODECS = {
    "aac": "aac",
    "ac3": "dolby_digital",
    "eac3": "dolby_digital_plus",
    "truehd": "dolby_truehd",
    "dts": "dts",
    "dca": "dts",
    "flac": "flac",
    "mp3": "mp3",
    "mp2": "mp2",
    "pcm": "lpcm",
    "vorbis": "ogg",
    "opus": "ogg_opus",
    "wma": "wma",
}

AUDIO_CHANNELS = {1: "1.0", 2: "2.0", 3: "2.1", 6: "5.1", 7: "6.1", 8: "7.1"}


class TraktAuthError(Exception):
    """Trakt rejected the account credentials."""
    pass


class TraktAPIError(Exception):
    """Trakt API operation failed."""
    pass


class TraktRateLimitError(TraktAPIError):
    """Trakt kept answering 429 after all retries."""
    pass


def _retry_after(response: requests.Response) -> float:
    try:
        return max(1.0, float(response.headers.get("Retry-After", 1)))
    except (TypeError, ValueError):
        return 1.0


def _id_value(key: str, value: str):
    if key in ("trakt", "tmdb", "tvdb") and str(value).isdigit():
        return int(value)
    return value


def _trakt_ids(provider_ids: dict[str, str], keys: tuple[str, ...]) -> dict:
    return {k: _id_value(k, provider_ids[k]) for k in keys if provider_ids.get(k)}


def _record_ids(ids: dict | None) -> dict[str, str]:
    return {k: str(v) for k, v in (ids or {}).items() if v not in (None, "")}


def collection_metadata(media: MediaInfo) -> dict:
    """Describe a local copy the way Trakt's collection metadata expects."""
    metadata = {"media_type": "digital"}
    if media.video_height:
        for height, name in RESOLUTIONS:
            if media.video_height >= height:
                metadata["resolution"] = name
                break
    if media.audio_codec:
        audio = AUDIO_CODECS.get(media.audio_codec.lower())
        if audio:
            metadata["audio"] = audio
    if media.audio_channels in AUDIO_CHANNELS:
        metadata["audio_channels"] = AUDIO_CHANNELS[media.audio_channels]
    if media.is_3d:
        metadata["3d"] = True
    return metadata


def _chunks(items: Sequence, size: int = CHUNK_SIZE) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _movie_payload(movie: Movie, event: str, watched_at: str | None) -> dict:
    entry = {
        "title": movie.name,
        "year": movie.year,
        "ids": _trakt_ids(movie.provider_ids, MOVIE_ID_KEYS),
    }
    if event == "collect":
        entry.update(collection_metadata(movie.media))
    if watched_at:
        entry["watched_at"] = watched_at
    return entry


def _shows_payload(episodes: Sequence[Episode], event: str, watched_at: str | None) -> list[dict]:
    """Group episodes into show -> season -> episode entries."""
    shows: dict[tuple, dict] = {}
    seasons: dict[tuple, dict] = {}

    for episode in episodes:
        season_number = episode.season_number
        if episode.index_number is None or season_number is None:
            logger.debug(f"Skipping unnumbered episode: {episode.name}")
            continue

        series = episode.series
        show_key = (series.name, series.year, tuple(sorted(series.provider_ids.items())))
        show = shows.get(show_key)
        if show is None:
            show = {
                "title": series.name,
                "year": series.year,
                "ids": _trakt_ids(series.provider_ids, SHOW_ID_KEYS),
                "seasons": [],
            }
            shows[show_key] = show

        season_key = (show_key, season_number)
        season = seasons.get(season_key)
        if season is None:
            season = {"number": season_number, "episodes": []}
            seasons[season_key] = season
            show["seasons"].append(season)

        last = episode.index_number_end or episode.index_number
        for number in range(episode.index_number, max(last, episode.index_number) + 1):
            entry = {"number": number}
            if event == "collect":
                entry.update(collection_metadata(episode.media))
            if watched_at:
                entry["watched_at"] = watched_at
            season["episodes"].append(entry)

    return list(shows.values())


def build_payload(items: Sequence[MediaItem], event: str, watched_at: str | None = None) -> dict:
    movies = [i for i in items if isinstance(i, Movie)]
    episodes = [i for i in items if isinstance(i, Episode)]
    payload = {}
    if movies:
        payload["movies"] = [_movie_payload(m, event, watched_at) for m in movies]
    shows = _shows_payload(episodes, event, watched_at) if episodes else []
    if shows:
        payload["shows"] = shows
    return payload


def _parse_movie(entry: dict) -> TraktMovieRecord:
    movie = entry.get("movie") or {}
    meta = entry.get("metadata") or {}
    return TraktMovieRecord(
        ids=_record_ids(movie.get("ids")),
        title=movie.get("title") or "",
        year=movie.get("year"),
        plays=entry.get("plays", 0) or 0,
        metadata=CollectionMetadata(
            media_type=meta.get("media_type"),
            resolution=meta.get("resolution"),
            hdr=meta.get("hdr"),
            audio=meta.get("audio"),
            audio_channels=meta.get("audio_channels"),
            is_3d=meta.get("3d"),
        ),
    )


def _parse_show(entry: dict) -> TraktShowRecord:
    show = entry.get("show") or {}
    seasons = []
    for season in entry.get("seasons") or []:
        episodes = [
            TraktEpisodeRecord(number=e.get("number"), plays=e.get("plays", 0) or 0)
            for e in season.get("episodes") or []
        ]
        seasons.append(TraktSeason(number=season.get("number"), episodes=episodes))
    return TraktShowRecord(
        ids=_record_ids(show.get("ids")),
        title=show.get("title") or "",
        year=show.get("year"),
        seasons=seasons,
    )


class TraktClient:
    """Trakt API client with token refresh and retry logic."""

    def __init__(self, client_id: str, client_secret: str,
                 tokens: TokenStore | None = None,
                 session: requests.Session | None = None):
        self._client_id = client_id
        self._client_secret = client_secret
        self._tokens = tokens
        self._session = session or requests.Session()
        logger.info("Trakt client initialized")

    def _headers(self, user: TraktUser) -> dict:
        return {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "trakt-api-version": "2",
            "trakt-api-key": self._client_id,
            "Authorization": f"Bearer {user.access_token}",
        }

    def _retry(self, operation: Callable[[], requests.Response], name: str,
               max_retries: int = 3) -> requests.Response:
        """Execute request with retry logic for rate limits and transient errors."""
        for attempt in range(max_retries):
            try:
                response = operation()
            except requests.RequestException as e:
                if attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Network error on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue
                raise TraktAPIError(f"Network error on {name}: {e}")

            status = response.status_code

            if status in (401, 403):
                raise TraktAuthError(f"Authorization rejected on {name} ({status})")

            if status == 429:
                if attempt < max_retries - 1:
                    wait = _retry_after(response)
                    logger.warning(f"Rate limited on {name}, waiting {wait:.0f}s...")
                    time.sleep(wait)
                    continue
                raise TraktRateLimitError(f"Rate limit on {name} after {max_retries} attempts")

            if status >= 500 and attempt < max_retries - 1:
                wait = 2 ** attempt
                logger.warning(f"Server error {status} on {name}, retrying in {wait}s...")
                time.sleep(wait)
                continue

            if status >= 400:
                raise TraktAPIError(f"API error on {name}: {status} {response.text[:200]}")

            return response

        raise TraktAPIError(f"{name} failed after {max_retries} attempts")

    def _refresh_token(self, user: TraktUser) -> None:
        if not user.refresh_token:
            raise TraktAuthError(f"Token expired and no refresh token for user {user.linked_user_id}")

        logger.info(f"Refreshing Trakt token for user {user.linked_user_id}")
        body = {
            "refresh_token": user.refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "redirect_uri": REDIRECT_URI,
            "grant_type": "refresh_token",
        }
        response = self._retry(
            lambda: self._session.post(TOKEN_URL, json=body, timeout=TIMEOUT,
                                       headers={"Content-Type": "application/json"}),
            "token refresh",
        )
        data = response.json()
        user.access_token = data["access_token"]
        user.refresh_token = data.get("refresh_token", user.refresh_token)
        created = data.get("created_at") or time.time()
        user.expires_at = float(created) + float(data.get("expires_in", 0))
        if self._tokens is not None:
            self._tokens.set(user)

    def _ensure_token(self, user: TraktUser) -> None:
        if user.expires_at and time.time() >= user.expires_at - REFRESH_MARGIN:
            self._refresh_token(user)

    def _request(self, method: str, url: str, user: TraktUser, name: str,
                 params: dict | None = None, body: dict | None = None):
        self._ensure_token(user)
        response = self._retry(
            lambda: self._session.request(method, url, headers=self._headers(user),
                                          params=params, json=body, timeout=TIMEOUT),
            name,
        )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Snapshots

    def get_watched_movies(self, user: TraktUser) -> list[TraktMovieRecord]:
        data = self._request("GET", URL_WATCHED_MOVIES, user, "watched movies") or []
        movies = [_parse_movie(entry) for entry in data]
        logger.debug(f"Retrieved {len(movies)} watched movies from Trakt")
        return movies

    def get_collected_movies(self, user: TraktUser) -> list[TraktMovieRecord]:
        data = self._request("GET", URL_COLLECTED_MOVIES, user, "collected movies",
                             params={"extended": "metadata"}) or []
        movies = [_parse_movie(entry) for entry in data]
        logger.debug(f"Retrieved {len(movies)} collected movies from Trakt")
        return movies

    def get_watched_shows(self, user: TraktUser) -> list[TraktShowRecord]:
        data = self._request("GET", URL_WATCHED_SHOWS, user, "watched shows") or []
        shows = [_parse_show(entry) for entry in data]
        logger.debug(f"Retrieved {len(shows)} watched shows from Trakt")
        return shows

    def get_collected_shows(self, user: TraktUser) -> list[TraktShowRecord]:
        data = self._request("GET", URL_COLLECTED_SHOWS, user, "collected shows") or []
        shows = [_parse_show(entry) for entry in data]
        logger.debug(f"Retrieved {len(shows)} collected shows from Trakt")
        return shows

    # Updates

    def _send(self, items: Sequence[MediaItem], user: TraktUser, url: str,
              event: str, name: str, watched_at: str | None = None) -> list[SyncResponse]:
        if user is None:
            raise ValueError("user must not be None")
        if not items:
            raise ValueError(f"No items supplied for {name}")

        responses = []
        for chunk in _chunks(list(items)):
            payload = build_payload(chunk, event, watched_at)
            if not payload:
                continue
            data = self._request("POST", url, user, name, body=payload)
            if data is not None:
                responses.append(SyncResponse.from_json(data))
        return responses

    def send_library_update(self, items: Sequence[MediaItem], user: TraktUser,
                            event_type: EventType = EventType.ADD) -> list[SyncResponse]:
        """Add items to (or remove them from) the user's Trakt collection."""
        if event_type == EventType.ADD:
            return self._send(items, user, URL_COLLECTION_ADD, "collect", "collection add")
        return self._send(items, user, URL_COLLECTION_REMOVE, "uncollect", "collection remove")

    def _send_playstate(self, items: Sequence[MediaItem], user: TraktUser,
                        seen: bool, name: str) -> list[SyncResponse]:
        if seen:
            watched_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            return self._send(items, user, URL_HISTORY_ADD, "watch", f"{name} watched", watched_at)
        return self._send(items, user, URL_HISTORY_REMOVE, "unwatch", f"{name} unwatched")

    def send_movie_playstate_updates(self, movies: Sequence[Movie], user: TraktUser,
                                     seen: bool) -> list[SyncResponse]:
        return self._send_playstate(movies, user, seen, "movies")

    def send_episode_playstate_updates(self, episodes: Sequence[Episode], user: TraktUser,
                                       seen: bool) -> list[SyncResponse]:
        return self._send_playstate(episodes, user, seen, "episodes")
