"""
Folding of the raw agent event log into display/metrics entries.

Two independent passes, applied in order:

- `combine_command_sequences` merges `run_command` requests with the output
  streamed for them into one `CommandEntry`.
- `combine_api_requests` merges `request_started` notices with their terminal
  `request_finished` / `request_retried` notices into one `ApiCallEntry`.

Both are pure functions of their input; entries are rebuilt from the log on
every update and never mutated afterwards.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal, Sequence, Union

from .protocol import AgentEvent, NoticeKind, RequestKind

logger = logging.getLogger(__name__)

# Terminal usage payload keys, with the snake_case spellings some hosts emit.
_USAGE_KEYS: dict[str, tuple[str, ...]] = {
    "tokens_in": ("tokensIn", "tokens_in"),
    "tokens_out": ("tokensOut", "tokens_out"),
    "cache_writes": ("cacheWrites", "cache_writes"),
    "cache_reads": ("cacheReads", "cache_reads"),
    "cost_usd": ("cost", "cost_usd", "costUsd"),
}


@dataclass(frozen=True, slots=True)
class ApiUsage:
    # None means the provider did not report the figure.
    tokens_in: int | None = None
    tokens_out: int | None = None
    cache_writes: int | None = None
    cache_reads: int | None = None
    cost_usd: float | None = None

    @property
    def is_known(self) -> bool:
        return any(
            v is not None
            for v in (self.tokens_in, self.tokens_out, self.cache_writes, self.cache_reads, self.cost_usd)
        )

    def merged_with(self, other: "ApiUsage") -> "ApiUsage":
        return ApiUsage(
            tokens_in=other.tokens_in if other.tokens_in is not None else self.tokens_in,
            tokens_out=other.tokens_out if other.tokens_out is not None else self.tokens_out,
            cache_writes=other.cache_writes if other.cache_writes is not None else self.cache_writes,
            cache_reads=other.cache_reads if other.cache_reads is not None else self.cache_reads,
            cost_usd=other.cost_usd if other.cost_usd is not None else self.cost_usd,
        )

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "ApiUsage":
        values: dict[str, Any] = {}
        for attr, keys in _USAGE_KEYS.items():
            raw = None
            for key in keys:
                if key in payload:
                    raw = payload[key]
                    break
            values[attr] = _as_number(raw, integral=attr != "cost_usd")
        return ApiUsage(**values)


@dataclass(frozen=True, slots=True)
class CommandEntry:
    started_at: int
    command: str
    accumulated_output: str = ""
    still_running: bool = True
    tag: Literal["command"] = "command"

    @property
    def sequence_id(self) -> int:
        return self.started_at


@dataclass(frozen=True, slots=True)
class ApiCallEntry:
    started_at: int
    request_payload: dict[str, Any] = field(default_factory=dict)
    usage: ApiUsage = field(default_factory=ApiUsage)
    retried: bool = False
    completed: bool = False
    tag: Literal["api_call"] = "api_call"

    @property
    def sequence_id(self) -> int:
        return self.started_at

    @property
    def in_flight(self) -> bool:
        return not self.completed


@dataclass(frozen=True, slots=True)
class PassthroughEntry:
    event: AgentEvent
    tag: Literal["passthrough"] = "passthrough"

    @property
    def sequence_id(self) -> int:
        return self.event.sequence_id


FoldedEntry = Union[CommandEntry, ApiCallEntry, PassthroughEntry]


def split_task(events: Sequence[AgentEvent]) -> tuple[AgentEvent | None, list[AgentEvent]]:
    """The first event defines the task and is rendered as a header, never folded."""

    if not events:
        return None, []
    return events[0], list(events[1:])


def fold_events(events: Iterable[AgentEvent]) -> list[FoldedEntry]:
    return combine_api_requests(combine_command_sequences(events))


def combine_command_sequences(events: Iterable[AgentEvent | FoldedEntry]) -> list[FoldedEntry]:
    out: list[FoldedEntry] = []
    open_idx: int | None = None

    for item in events:
        if isinstance(item, (CommandEntry, ApiCallEntry)):
            open_idx = None
            out.append(item)
            continue
        ev = item.event if isinstance(item, PassthroughEntry) else item

        if ev.is_request(RequestKind.RUN_COMMAND):
            out.append(CommandEntry(started_at=ev.sequence_id, command=ev.text or ""))
            open_idx = len(out) - 1
            continue

        if ev.is_notice(NoticeKind.COMMAND_OUTPUT) or ev.is_request(RequestKind.COMMAND_OUTPUT):
            if open_idx is None:
                # No command to attach to (e.g. a truncated log); keep it as-is.
                out.append(PassthroughEntry(ev))
                continue
            entry = out[open_idx]
            assert isinstance(entry, CommandEntry)
            if ev.is_notice():
                out[open_idx] = replace(entry, accumulated_output=entry.accumulated_output + (ev.text or ""))
            else:
                # The request carries the first output line of a long-running command.
                out[open_idx] = replace(
                    entry,
                    accumulated_output=entry.accumulated_output + (ev.text or ""),
                    still_running=False,
                )
            continue

        open_idx = None
        out.append(PassthroughEntry(ev))

    return out


def combine_api_requests(entries: Iterable[FoldedEntry | AgentEvent]) -> list[FoldedEntry]:
    out: list[FoldedEntry] = []
    open_idx: int | None = None

    for item in entries:
        entry: FoldedEntry = PassthroughEntry(item) if isinstance(item, AgentEvent) else item
        if not isinstance(entry, PassthroughEntry) or not entry.event.is_notice():
            out.append(entry)
            continue

        ev = entry.event
        if ev.notice_kind is NoticeKind.REQUEST_STARTED:
            out.append(ApiCallEntry(started_at=ev.sequence_id, request_payload=parse_payload(ev)))
            open_idx = len(out) - 1
            continue

        if ev.notice_kind in (NoticeKind.REQUEST_FINISHED, NoticeKind.REQUEST_RETRIED):
            if open_idx is None:
                out.append(entry)
                continue
            call = out[open_idx]
            assert isinstance(call, ApiCallEntry)
            usage = call.usage.merged_with(ApiUsage.from_payload(parse_payload(ev)))
            if ev.notice_kind is NoticeKind.REQUEST_RETRIED:
                out[open_idx] = replace(call, usage=usage, retried=True)
            else:
                out[open_idx] = replace(call, usage=usage, completed=True)
                open_idx = None
            continue

        out.append(entry)

    return out


def parse_payload(ev: AgentEvent) -> dict[str, Any]:
    """Parse a bookkeeping event's JSON text; anything unusable becomes `{}`."""

    text = ev.text
    if text is None or not text.strip():
        return {}
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError and the int digit limit.
        logger.debug("event %s (%s): malformed JSON payload: %s", ev.sequence_id, ev.kind_label, e)
        return {}
    if not isinstance(data, dict):
        logger.debug("event %s (%s): payload is not a JSON object", ev.sequence_id, ev.kind_label)
        return {}
    return data


def _as_number(value: Any, *, integral: bool) -> int | float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            num = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(num):
        return None
    return int(num) if integral else num
