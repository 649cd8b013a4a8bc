"""Device state records for Libratone speakers.

A speaker's state is kept as an immutable ``DeviceInfo`` snapshot. Every field
is optional: it is unset until the speaker first reports it and, once set, is
only ever overwritten, never cleared. ``merge_info`` is the single way a new
snapshot is derived from an old one.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)

from libratone_lan.logging_abstraction import get_logger

__all__ = [
    "ChannelType",
    "CurrentTrack",
    "DeviceInfo",
    "Favorite",
    "PlayingState",
    "PowerState",
    "merge_info",
]

logger = get_logger(__name__)


class PowerState(StrEnum):
    """Speaker power state."""

    SLEEPING = "sleeping"
    AWAKE = "awake"


class PlayingState(StrEnum):
    """Playback state change, in the order the speaker numbers them."""

    PLAY = "play"
    STOP = "stop"
    PAUSE = "pause"
    NEXT = "next"
    PREVIOUS = "previous"
    TOGGLE = "toggle"
    MUTE = "mute"
    UNMUTE = "unmute"


class ChannelType(StrEnum):
    """Streaming service a favorite belongs to."""

    VTUNER = "vtuner"
    XMLY = "xmly"
    DOUBANFM = "doubanfm"
    SPOTIFY = "spotify"
    KAISHU = "kaishu"
    DEEZER = "deezer"
    TIDAL = "tidal"
    NAPSTER = "napster"


class _LenientRecord(BaseModel):
    """Record decoded from a speaker JSON object.

    A field whose value has the wrong type is left unset instead of failing
    the whole record.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_invalid_field(
        cls,
        value: object,
        handler: ValidatorFunctionWrapHandler,
        info: ValidationInfo,
    ) -> object:
        try:
            return handler(value)
        except ValidationError:
            logger.warning(
                "Dropping invalid %s field",
                cls.__name__,
                extra={"field": info.field_name, "value": value},
            )
            return None


class Favorite(_LenientRecord):
    """One entry of the speaker's favorites list."""

    is_playing: StrictBool | None = Field(default=None, alias="isPlaying")
    channel_id: StrictStr | None = None
    channel_type: ChannelType | None = None
    channel_name: StrictStr | None = None
    channel_identity: StrictStr | None = None
    station_url: StrictStr | None = None
    picture_url: StrictStr | None = None
    username: StrictStr | None = None
    password: StrictStr | None = Field(default=None, repr=False)
    play_token: StrictStr | None = None


class CurrentTrack(_LenientRecord):
    """What the speaker is currently playing."""

    is_from_channel: StrictBool | None = Field(default=None, alias="isFromChannel")
    play_album: StrictStr | None = None
    play_album_uri: StrictStr | None = None
    play_artist: StrictStr | None = None
    play_attribution: StrictStr | None = None
    play_identity: StrictStr | None = None
    play_object: StrictStr | None = None
    play_pic: StrictStr | None = None
    play_preset_available: StrictInt | None = None
    play_subtitle: StrictStr | None = None
    play_title: StrictStr | None = None
    play_type: StrictStr | None = None
    play_username: StrictStr | None = None
    play_token: StrictStr | None = None

    @classmethod
    def from_favorite(cls, favorite: Favorite) -> CurrentTrack:
        """Build the track that, when set on a speaker, plays ``favorite``."""
        return cls(
            play_title=favorite.channel_name,
            play_subtitle=favorite.channel_name,
            play_type=favorite.channel_type.value if favorite.channel_type else None,
            play_identity=favorite.channel_identity,
            play_token=favorite.play_token,
        )

    def to_json_bytes(self) -> bytes:
        """Serialize with the speaker's field names, omitting unset fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class DeviceInfo(BaseModel):
    """Immutable snapshot of everything known about one speaker."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    volume: int | None = Field(default=None, ge=0, le=100)
    power_state: PowerState | None = None
    playing_state: PlayingState | None = None
    current_track: CurrentTrack | None = None
    favorites: tuple[Favorite, ...] | None = None


def merge_info(info: DeviceInfo, update: Mapping[str, object]) -> DeviceInfo:
    """Return a new snapshot with ``update`` applied on top of ``info``.

    None values in ``update`` leave the existing field untouched.

    Raises:
        ValueError: ``update`` names a field DeviceInfo does not have

    """
    unknown = set(update) - set(DeviceInfo.model_fields)
    if unknown:
        error_msg = f"Unknown DeviceInfo fields: {sorted(unknown)}"
        raise ValueError(error_msg)

    changes = {key: value for key, value in update.items() if value is not None}
    if not changes:
        return info
    return info.model_copy(update=changes)
