"""Data models for library sync operations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Union


class SyncCancelledError(Exception):
    """Raised when a sync run is cancelled between two items."""
    pass


class LocationType(str, Enum):
    FILESYSTEM = "filesystem"
    REMOTE = "remote"
    VIRTUAL = "virtual"
    OFFLINE = "offline"


class EventType(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass
class MediaInfo:
    """Stream details used to describe a collected copy."""
    video_height: int | None = None
    audio_codec: str | None = None
    audio_channels: int | None = None
    is_3d: bool = False


@dataclass
class Series:
    name: str
    year: int | None = None
    provider_ids: dict[str, str] = field(default_factory=dict)


@dataclass
class Movie:
    """A movie from the local library."""
    item_id: str
    name: str
    path: str | None
    year: int | None = None
    location_type: LocationType = LocationType.FILESYSTEM
    provider_ids: dict[str, str] = field(default_factory=dict)
    media: MediaInfo = field(default_factory=MediaInfo)

    @property
    def user_data_key(self) -> str:
        return self.item_id


@dataclass
class Episode:
    """An episode from the local library."""
    item_id: str
    name: str
    path: str | None
    series: Series
    index_number: int | None
    parent_index_number: int | None = None
    season_index: int | None = None
    index_number_end: int | None = None
    year: int | None = None
    location_type: LocationType = LocationType.FILESYSTEM
    provider_ids: dict[str, str] = field(default_factory=dict)
    media: MediaInfo = field(default_factory=MediaInfo)

    @property
    def user_data_key(self) -> str:
        return self.item_id

    @property
    def season_number(self) -> int | None:
        # Falls back to the owning season's index when the episode has none
        if self.parent_index_number is not None:
            return self.parent_index_number
        return self.season_index

    @property
    def series_name(self) -> str:
        return self.series.name


MediaItem = Union[Movie, Episode]


@dataclass
class UserData:
    played: bool = False
    play_count: int = 0


@dataclass
class TraktUser:
    """Trakt account linked to a local user."""
    linked_user_id: str
    access_token: str
    refresh_token: str = ""
    expires_at: float = 0.0
    username: str = ""


@dataclass
class LocalUser:
    user_id: str
    name: str
    trakt: TraktUser | None = None

    @property
    def is_linked(self) -> bool:
        return bool(self.trakt and self.trakt.linked_user_id and self.trakt.access_token)


@dataclass
class CollectionMetadata:
    media_type: str | None = None
    resolution: str | None = None
    hdr: str | None = None
    audio: str | None = None
    audio_channels: str | None = None
    is_3d: bool | None = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.media_type, self.resolution, self.hdr,
                          self.audio, self.audio_channels, self.is_3d)
        )


@dataclass
class TraktMovieRecord:
    """A movie from a watched or collected snapshot."""
    ids: dict[str, str]
    title: str = ""
    year: int | None = None
    plays: int = 0
    metadata: CollectionMetadata = field(default_factory=CollectionMetadata)


@dataclass
class TraktEpisodeRecord:
    number: int
    plays: int = 0


@dataclass
class TraktSeason:
    number: int
    episodes: List[TraktEpisodeRecord] = field(default_factory=list)


@dataclass
class TraktShowRecord:
    """A show from a watched or collected snapshot."""
    ids: dict[str, str]
    title: str = ""
    year: int | None = None
    seasons: List[TraktSeason] = field(default_factory=list)

    def season(self, number: int | None) -> TraktSeason | None:
        for season in self.seasons:
            if season.number == number:
                return season
        return None


@dataclass
class SyncCounts:
    movies: int = 0
    shows: int = 0
    seasons: int = 0
    episodes: int = 0


@dataclass
class NotFound:
    movies: List[dict] = field(default_factory=list)
    shows: List[dict] = field(default_factory=list)
    seasons: List[dict] = field(default_factory=list)
    episodes: List[dict] = field(default_factory=list)


@dataclass
class SyncResponse:
    """Response of one batched collection or history call."""
    added: SyncCounts = field(default_factory=SyncCounts)
    deleted: SyncCounts = field(default_factory=SyncCounts)
    existing: SyncCounts = field(default_factory=SyncCounts)
    not_found: NotFound = field(default_factory=NotFound)

    @classmethod
    def from_json(cls, data: dict) -> "SyncResponse":
        def counts(key: str) -> SyncCounts:
            block = data.get(key) or {}
            return SyncCounts(
                movies=block.get("movies", 0) or 0,
                shows=block.get("shows", 0) or 0,
                seasons=block.get("seasons", 0) or 0,
                episodes=block.get("episodes", 0) or 0,
            )

        missing = data.get("not_found") or {}
        return cls(
            added=counts("added"),
            deleted=counts("deleted"),
            existing=counts("existing"),
            not_found=NotFound(
                movies=list(missing.get("movies") or []),
                shows=list(missing.get("shows") or []),
                seasons=list(missing.get("seasons") or []),
                episodes=list(missing.get("episodes") or []),
            ),
        )


@dataclass
class SyncBuckets:
    """Per-user accumulator filled during traversal and drained by the flush."""
    movies_to_collect: List[Movie] = field(default_factory=list)
    movies_played: List[Movie] = field(default_factory=list)
    movies_unplayed: List[Movie] = field(default_factory=list)
    episodes_to_collect: List[Episode] = field(default_factory=list)
    episodes_played: List[Episode] = field(default_factory=list)
    episodes_unplayed: List[Episode] = field(default_factory=list)

    def total(self) -> int:
        return (len(self.movies_to_collect) + len(self.movies_played)
                + len(self.movies_unplayed) + len(self.episodes_to_collect)
                + len(self.episodes_played) + len(self.episodes_unplayed))


@dataclass
class SyncResult:
    """Result of a sync run."""
    success: bool
    users_synced: int = 0
    movies_collected: int = 0
    episodes_collected: int = 0
    movies_watched: int = 0
    movies_unwatched: int = 0
    episodes_watched: int = 0
    episodes_unwatched: int = 0
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    duration: float = 0.0

    @classmethod
    def failure(cls, error: str) -> "SyncResult":
        """Create a failure result with single error."""
        return cls(success=False, errors=[error])
