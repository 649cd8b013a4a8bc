"""Property registry for Libratone speakers.

Each speaker property is described once: the command ids used to fetch it,
set it and be notified of it, and the payload codec translating between wire
bytes and a ``DeviceInfo`` field.

    property        fetch  set  notify  payload
    name            90     90   -       UTF-8 string
    volume          64     64   64      ASCII decimal, 0-100
    power state     15     15   15      "00" awake, "02" sleeping
    playing state   51     40   51      one ASCII digit in / command word out
    current track   278    277  278     JSON object
    favorites       275    -    -       JSON array of objects

The playing state and current track are changed with a different command id
than the one they are fetched and notified with. Keep them distinct.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from libratone_lan.exceptions import PropertyNotSettableError
from libratone_lan.logging_abstraction import get_logger
from libratone_lan.structs import CurrentTrack, Favorite, PlayingState, PowerState

__all__ = [
    "BY_FETCH_ID",
    "BY_NOTIFY_ID",
    "CURRENT_TRACK",
    "FAVORITES",
    "NAME",
    "PLAYING_STATE",
    "POWER_STATE",
    "PROPERTIES",
    "VOLUME",
    "FieldUpdate",
    "PropertyDescriptor",
    "lookup_notify",
    "lookup_reply",
]

logger = get_logger(__name__)

FieldUpdate = dict[str, object]

MAX_VOLUME = 100

POWER_STATE_CODES: dict[str, PowerState] = {
    "00": PowerState.AWAKE,
    "02": PowerState.SLEEPING,
}

# Notifications carry the ASCII digit of the state's index in PlayingState
PLAYING_STATE_DIGIT_BASE = ord("0")

PLAYING_STATE_COMMANDS: dict[PlayingState, str] = {
    PlayingState.PLAY: "PLAY",
    PlayingState.STOP: "STOP",
    PlayingState.PAUSE: "PAUSE",
    PlayingState.NEXT: "NEXT",
    PlayingState.PREVIOUS: "PREV",
    PlayingState.TOGGLE: "TOGGL",
    PlayingState.MUTE: "MUTE",
    PlayingState.UNMUTE: "UNMUTE",
}


@dataclass(frozen=True)
class PropertyDescriptor:
    """Binds one speaker property to its command ids and payload codec.

    Attributes:
        name: Human-readable property name
        fetch_id: Command id of fetch requests and their replies
        decode: Turns a payload into a DeviceInfo field update, None on failure
        set_id: Command id of set requests, None if the property is read-only
        notify_id: Command id of notifications, None if never notified
        encode: Turns a value into a set payload

    """

    name: str
    fetch_id: int
    decode: Callable[[bytes], FieldUpdate | None]
    set_id: int | None = None
    notify_id: int | None = None
    encode: Callable[[Any], bytes] | None = None

    @property
    def settable(self) -> bool:
        return self.set_id is not None and self.encode is not None

    def encode_value(self, value: Any) -> bytes:
        """Encode ``value`` into a set payload.

        Raises:
            PropertyNotSettableError: the property has no set command

        """
        if self.set_id is None or self.encode is None:
            raise PropertyNotSettableError(self.name)
        return self.encode(value)


def _decode_text(payload: bytes, property_name: str) -> str | None:
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        logger.error(
            "Invalid UTF-8 in %s payload",
            property_name,
            extra={"payload_hex": payload.hex(" ")},
        )
        return None


def _decode_name(payload: bytes) -> FieldUpdate | None:
    name = _decode_text(payload, "name")
    if name is None:
        return None
    return {"name": name}


def _encode_name(name: str) -> bytes:
    return name.encode("utf-8")


def _decode_volume(payload: bytes) -> FieldUpdate | None:
    text = _decode_text(payload, "volume")
    if text is None:
        return None
    if not (text.isascii() and text.isdigit()):
        logger.error("Error parsing volume value %r", text)
        return None
    volume = int(text)
    if volume > MAX_VOLUME:
        logger.error("Volume value out of range: %d", volume)
        return None
    return {"volume": volume}


def _encode_volume(volume: int) -> bytes:
    if volume < 0:
        error_msg = f"Volume must not be negative, got {volume}"
        raise ValueError(error_msg)
    return str(min(volume, MAX_VOLUME)).encode("ascii")


def _decode_power_state(payload: bytes) -> FieldUpdate | None:
    state = POWER_STATE_CODES.get(payload.decode("ascii", errors="replace"))
    if state is None:
        logger.error("Invalid power state value", extra={"payload_hex": payload.hex(" ")})
        return None
    return {"power_state": state}


def _encode_power_state(state: PowerState) -> bytes:
    for code, code_state in POWER_STATE_CODES.items():
        if code_state == state:
            return code.encode("ascii")
    error_msg = f"Unknown power state: {state!r}"
    raise ValueError(error_msg)


def _decode_playing_state(payload: bytes) -> FieldUpdate | None:
    if len(payload) != 1:
        logger.error("Expected 1 byte for playing state change, got %d", len(payload))
        return None

    states = list(PlayingState)
    index = payload[0] - PLAYING_STATE_DIGIT_BASE
    if not 0 <= index < len(states):
        logger.error("Invalid playing state change value: %d", payload[0])
        return None
    return {"playing_state": states[index]}


def _encode_playing_state(state: PlayingState) -> bytes:
    return PLAYING_STATE_COMMANDS[PlayingState(state)].encode("ascii")


def _decode_current_track(payload: bytes) -> FieldUpdate | None:
    try:
        track = CurrentTrack.model_validate_json(payload)
    except ValidationError as e:
        logger.error(
            "Invalid current track data",
            extra={"error_count": e.error_count(), "payload_len": len(payload)},
        )
        return None
    return {"current_track": track}


def _encode_current_track(track: CurrentTrack) -> bytes:
    return track.to_json_bytes()


def _decode_favorites(payload: bytes) -> FieldUpdate | None:
    try:
        entries = json.loads(payload)
    except ValueError:
        logger.error("Invalid JSON in favorites data", extra={"payload_len": len(payload)})
        return None

    if not isinstance(entries, list):
        logger.error("Favorites data is not an array", extra={"type": type(entries).__name__})
        return None

    favorites: list[Favorite] = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.error("Invalid favorite data: %r", entry)
            continue
        favorites.append(Favorite.model_validate(entry))

    return {"favorites": tuple(favorites)}


NAME = PropertyDescriptor(
    name="name",
    fetch_id=90,
    set_id=90,
    decode=_decode_name,
    encode=_encode_name,
)
VOLUME = PropertyDescriptor(
    name="volume",
    fetch_id=64,
    set_id=64,
    notify_id=64,
    decode=_decode_volume,
    encode=_encode_volume,
)
POWER_STATE = PropertyDescriptor(
    name="power state",
    fetch_id=15,
    set_id=15,
    notify_id=15,
    decode=_decode_power_state,
    encode=_encode_power_state,
)
PLAYING_STATE = PropertyDescriptor(
    name="playing state",
    fetch_id=51,
    set_id=40,
    notify_id=51,
    decode=_decode_playing_state,
    encode=_encode_playing_state,
)
CURRENT_TRACK = PropertyDescriptor(
    name="current track",
    fetch_id=278,
    set_id=277,
    notify_id=278,
    decode=_decode_current_track,
    encode=_encode_current_track,
)
FAVORITES = PropertyDescriptor(
    name="favorites",
    fetch_id=275,
    decode=_decode_favorites,
)

# Fetch order on session start
PROPERTIES: tuple[PropertyDescriptor, ...] = (
    NAME,
    VOLUME,
    POWER_STATE,
    PLAYING_STATE,
    CURRENT_TRACK,
    FAVORITES,
)


def _index(descriptors: Iterable[PropertyDescriptor], attr: str) -> dict[int, PropertyDescriptor]:
    index: dict[int, PropertyDescriptor] = {}
    for descriptor in descriptors:
        command_id = getattr(descriptor, attr)
        if command_id is None:
            continue
        if command_id in index:
            error_msg = f"Duplicate {attr} {command_id}: {index[command_id].name!r} and {descriptor.name!r}"
            raise ValueError(error_msg)
        index[command_id] = descriptor
    return index


BY_FETCH_ID: dict[int, PropertyDescriptor] = _index(PROPERTIES, "fetch_id")
BY_NOTIFY_ID: dict[int, PropertyDescriptor] = _index(PROPERTIES, "notify_id")


def lookup_reply(command_id: int) -> PropertyDescriptor | None:
    """Return the descriptor a reply with ``command_id`` belongs to."""
    return BY_FETCH_ID.get(command_id)


def lookup_notify(command_id: int) -> PropertyDescriptor | None:
    """Return the descriptor a notification with ``command_id`` belongs to."""
    return BY_NOTIFY_ID.get(command_id)
