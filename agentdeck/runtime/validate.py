from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from .error_codes import ErrorCode
from .protocol import AgentEvent, EventShapeError, NoticeKind, RequestKind


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    severity: str  # "error" | "warning"
    message: str
    location: str | None = None
    code: str | None = None

    def render(self) -> str:
        loc = f"{self.location}: " if self.location else ""
        code = f" [{self.code}]" if self.code else ""
        return f"{self.severity}: {loc}{self.message}{code}"


def validate_events_file(path: Path, *, strict: bool = False) -> list[ValidationIssue]:
    path = path.expanduser()
    issues: list[ValidationIssue] = []
    events = load_events(path, issues=issues)
    issues.extend(validate_events(events, strict=strict))
    return issues


def load_events(path: Path, *, issues: list[ValidationIssue]) -> list[tuple[str, AgentEvent]]:
    if not path.exists():
        issues.append(ValidationIssue("error", "Events file not found.", str(path)))
        return []

    events: list[tuple[str, AgentEvent]] = []
    with path.open("r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            raw_line = line.rstrip("\n")
            if not raw_line.strip():
                continue
            loc = f"{path}:{line_no}"
            try:
                data = json.loads(raw_line)
            except json.JSONDecodeError as e:
                issues.append(ValidationIssue("error", f"Invalid JSON: {e}", loc))
                continue
            if not isinstance(data, dict):
                issues.append(ValidationIssue("error", "Event line must be a JSON object.", loc))
                continue
            try:
                events.append((loc, AgentEvent.from_dict(data)))
            except EventShapeError as e:
                issues.append(
                    ValidationIssue("error", f"Invalid event shape: {e}", loc, ErrorCode.EVENT_SHAPE_INVALID.value)
                )
    return events


def validate_events(events: list[tuple[str, AgentEvent]], *, strict: bool = False) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    soft = "error" if strict else "warning"

    if events:
        loc, first = events[0]
        if not first.is_notice(NoticeKind.TEXT):
            issues.append(ValidationIssue(soft, f"First event should be the task text, got {first.kind_label}.", loc))

    last_seq: int | None = None
    open_api_call = False
    open_command = False
    for idx, (loc, ev) in enumerate(events):
        if last_seq is not None and ev.sequence_id <= last_seq:
            issues.append(
                ValidationIssue(
                    "error",
                    f"sequence_id {ev.sequence_id} does not follow {last_seq}.",
                    loc,
                    ErrorCode.EVENT_OUT_OF_ORDER.value,
                )
            )
        last_seq = ev.sequence_id if last_seq is None else max(last_seq, ev.sequence_id)
        if idx == 0:
            continue

        if ev.is_request(RequestKind.RUN_COMMAND):
            open_command = True
        elif ev.is_notice(NoticeKind.COMMAND_OUTPUT) or ev.is_request(RequestKind.COMMAND_OUTPUT):
            if not open_command:
                issues.append(
                    ValidationIssue(
                        soft,
                        "command_output without a preceding run_command.",
                        loc,
                        ErrorCode.ORPHAN_COMMAND_OUTPUT.value,
                    )
                )
        else:
            open_command = False

        if ev.is_notice(NoticeKind.REQUEST_STARTED):
            open_api_call = True
            if ev.text and not _payload_is_object(ev.text):
                issues.append(
                    ValidationIssue(
                        "warning", "request_started payload is not a JSON object.", loc, ErrorCode.MALFORMED_PAYLOAD.value
                    )
                )
        elif ev.is_notice(NoticeKind.REQUEST_RETRIED) or ev.is_notice(NoticeKind.REQUEST_FINISHED):
            if not open_api_call:
                issues.append(
                    ValidationIssue(
                        soft,
                        f"{ev.kind_label} without an open request_started.",
                        loc,
                        ErrorCode.UNMATCHED_TERMINAL.value,
                    )
                )
            if ev.is_notice(NoticeKind.REQUEST_FINISHED):
                open_api_call = False
                if ev.text and not _payload_is_object(ev.text):
                    issues.append(
                        ValidationIssue(
                            "warning",
                            "request_finished payload is not a JSON object.",
                            loc,
                            ErrorCode.MALFORMED_PAYLOAD.value,
                        )
                    )
    return issues


def _payload_is_object(text: str) -> bool:
    try:
        return isinstance(json.loads(text), dict)
    except json.JSONDecodeError:
        return False
