"""Messages exchanged between the foreground app and the background worker.

Each variant serializes to ``{"type": ..., "payload": ...}``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from processor.models import SyncResult

DEFAULT_SYNC_TAG = 'calendar-sync'


class MessageType(str, Enum):
    SKIP_WAITING = 'SKIP_WAITING'
    REGISTER_BACKGROUND_SYNC = 'REGISTER_BACKGROUND_SYNC'
    REGISTER_PERIODIC_SYNC = 'REGISTER_PERIODIC_SYNC'
    BACKGROUND_SYNC_COMPLETE = 'BACKGROUND_SYNC_COMPLETE'


@dataclass(frozen=True)
class SkipWaiting:
    """Ask the worker to activate its newest deployment immediately."""


@dataclass(frozen=True)
class RegisterBackgroundSync:
    tag: str = DEFAULT_SYNC_TAG


@dataclass(frozen=True)
class RegisterPeriodicSync:
    tag: str = DEFAULT_SYNC_TAG
    min_interval_seconds: int = 12 * 60 * 60


@dataclass(frozen=True)
class BackgroundSyncComplete:
    result: SyncResult


Message = Union[SkipWaiting, RegisterBackgroundSync, RegisterPeriodicSync, BackgroundSyncComplete]


@dataclass(frozen=True)
class Ack:
    """Acknowledgement of a foreground request."""
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'success': self.success}
        if self.error:
            data['error'] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Ack':
        return cls(success=bool(data.get('success')), error=data.get('error'))


def message_type(message: Message) -> MessageType:
    if isinstance(message, SkipWaiting):
        return MessageType.SKIP_WAITING
    if isinstance(message, RegisterBackgroundSync):
        return MessageType.REGISTER_BACKGROUND_SYNC
    if isinstance(message, RegisterPeriodicSync):
        return MessageType.REGISTER_PERIODIC_SYNC
    if isinstance(message, BackgroundSyncComplete):
        return MessageType.BACKGROUND_SYNC_COMPLETE
    raise TypeError(f"Not a message: {message!r}")


def to_wire(message: Message) -> Dict[str, Any]:
    """Serialize a message to its ``{type, payload}`` form."""
    kind = message_type(message)
    if kind == MessageType.SKIP_WAITING:
        payload: Dict[str, Any] = {}
    elif kind == MessageType.REGISTER_BACKGROUND_SYNC:
        payload = {'tag': message.tag}
    elif kind == MessageType.REGISTER_PERIODIC_SYNC:
        payload = {'tag': message.tag, 'minInterval': message.min_interval_seconds}
    else:
        payload = message.result.to_dict()
    return {'type': kind.value, 'payload': payload}


def from_wire(data: Dict[str, Any]) -> Message:
    """
    Parse a ``{type, payload}`` dict.

    Raises:
        ValueError: If the type is unknown or the payload is invalid
    """
    if not isinstance(data, dict) or 'type' not in data:
        raise ValueError('Message must be an object with a type')

    try:
        kind = MessageType(data['type'])
    except ValueError:
        raise ValueError(f"Unknown message type: {data['type']!r}")

    payload = data.get('payload') or {}
    if not isinstance(payload, dict):
        raise ValueError('Message payload must be an object')

    if kind == MessageType.SKIP_WAITING:
        return SkipWaiting()
    if kind == MessageType.REGISTER_BACKGROUND_SYNC:
        return RegisterBackgroundSync(tag=payload.get('tag', DEFAULT_SYNC_TAG))
    if kind == MessageType.REGISTER_PERIODIC_SYNC:
        return RegisterPeriodicSync(
            tag=payload.get('tag', DEFAULT_SYNC_TAG),
            min_interval_seconds=int(payload.get('minInterval', 12 * 60 * 60)),
        )
    try:
        return BackgroundSyncComplete(result=SyncResult.from_dict(payload))
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid sync result payload: {e}") from e


def is_message(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    return data.get('type') in {kind.value for kind in MessageType}
