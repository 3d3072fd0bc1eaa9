from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator

from ..ids import new_id, now_ts_ms
from ..protocol import AgentEvent, EventShapeError, HostCommand, Response
from .base import EventLogStore, ResponseStore

logger = logging.getLogger(__name__)


def _replace_surrogates(text: str) -> str:
    out: list[str] = []
    changed = False
    for ch in text:
        o = ord(ch)
        if 0xD800 <= o <= 0xDFFF:
            out.append("\uFFFD")
            changed = True
        else:
            out.append(ch)
    return "".join(out) if changed else text


def _sanitize_json_value(value: Any) -> Any:
    if isinstance(value, str):
        return _replace_surrogates(value)
    if isinstance(value, list):
        return [_sanitize_json_value(v) for v in value]
    if isinstance(value, dict):
        out: dict[Any, Any] = {}
        for k, v in value.items():
            key = _replace_surrogates(k) if isinstance(k, str) else k
            out[key] = _sanitize_json_value(v)
        return out
    return value


def _append_jsonl(path: Path, obj: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8", errors="backslashreplace") as f:
        f.write(json.dumps(_sanitize_json_value(obj), ensure_ascii=False))
        f.write("\n")


def _parse_event_line(line: str, *, location: str) -> AgentEvent | None:
    line = line.strip()
    if not line:
        return None
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning("%s: skipping invalid JSON line: %s", location, e)
        return None
    if not isinstance(raw, dict):
        logger.warning("%s: skipping non-object line", location)
        return None
    try:
        return AgentEvent.from_dict(raw)
    except EventShapeError as e:
        logger.warning("%s: skipping malformed event: %s", location, e)
        return None


class FileEventLogStore(EventLogStore):
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read(self, since_sequence_id: int | None = None) -> Iterator[AgentEvent]:
        if not self._path.exists():
            return iter(())
        return self._iter(since_sequence_id)

    def _iter(self, since_sequence_id: int | None) -> Iterator[AgentEvent]:
        with self._path.open("r", encoding="utf-8", errors="replace") as f:
            for line_no, line in enumerate(f, start=1):
                event = _parse_event_line(line, location=f"{self._path}:{line_no}")
                if event is None:
                    continue
                if since_sequence_id is not None and event.sequence_id <= since_sequence_id:
                    continue
                yield event

    def read_new(self, offset: int) -> tuple[list[AgentEvent], int]:
        if not self._path.exists():
            return [], 0
        size = self._path.stat().st_size
        if size < offset:
            # Truncated or replaced; the caller sees events from the start again.
            logger.warning("%s shrank (%d < %d); rereading from the start", self._path, size, offset)
            offset = 0
        with self._path.open("rb") as f:
            f.seek(offset)
            data = f.read()
        # Only consume complete lines; a writer may be mid-line.
        end = data.rfind(b"\n")
        if end < 0:
            return [], offset
        chunk = data[: end + 1]
        events: list[AgentEvent] = []
        for idx, raw_line in enumerate(chunk.split(b"\n")):
            event = _parse_event_line(
                raw_line.decode("utf-8", errors="replace"),
                location=f"{self._path}@{offset}+{idx}",
            )
            if event is not None:
                events.append(event)
        return events, offset + len(chunk)


class FileResponseStore(ResponseStore):
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def append_response(self, response: Response, *, in_reply_to: int | None) -> None:
        record: dict[str, Any] = {
            "type": "ask_response",
            "response_id": new_id("resp"),
            "timestamp": now_ts_ms(),
            "response": response.to_dict(),
        }
        if in_reply_to is not None:
            record["in_reply_to"] = in_reply_to
        _append_jsonl(self._path, record)

    def append_command(self, command: HostCommand) -> None:
        record = {
            "type": "host_command",
            "response_id": new_id("cmd"),
            "timestamp": now_ts_ms(),
            **command.to_dict(),
        }
        _append_jsonl(self._path, record)

    def read(self) -> Iterator[dict]:
        if not self._path.exists():
            return iter(())
        return self._iter()

    def _iter(self) -> Iterator[dict]:
        with self._path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    raw = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(raw, dict):
                    yield raw
