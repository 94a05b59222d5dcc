# catalog_sync/sync/events.py
# Progress events published by the sync engine and the bulk operations.
# Transports (NDJSON HTTP stream, JSONL log file) only ever see SyncEvent.
from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, Protocol


@dataclass
class SyncEvent:
    type: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **self.fields}

    def to_line(self) -> str:
        return json.dumps(self.as_dict(), ensure_ascii=False, default=str) + "\n"


class Emit(Protocol):
    def __call__(self, type_: str, **fields: Any) -> None: ...


class EventBuffer:
    """
    Ordered buffer between the code that produces events and the async generator
    that hands them to the consumer. Producers call it like a function.
    """

    def __init__(self, listener: Callable[[SyncEvent], None] | None = None):
        self._pending: Deque[SyncEvent] = deque()
        self._listener = listener

    def __call__(self, type_: str, **fields: Any) -> None:
        event = SyncEvent(type_, fields)
        if self._listener:
            self._listener(event)
        self._pending.append(event)

    def drain(self) -> Iterator[SyncEvent]:
        while self._pending:
            yield self._pending.popleft()

    def __len__(self) -> int:
        return len(self._pending)


def encode_ndjson(event: SyncEvent | Dict[str, Any]) -> bytes:
    if isinstance(event, SyncEvent):
        return event.to_line().encode("utf-8")
    return (json.dumps(event, ensure_ascii=False, default=str) + "\n").encode("utf-8")
