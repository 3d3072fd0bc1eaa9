from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    REQUEST = "request"
    NOTICE = "notice"


class RequestKind(str, Enum):
    FOLLOW_UP = "follow_up"
    TOOL_USE = "tool_use"
    RUN_COMMAND = "run_command"
    COMMAND_OUTPUT = "command_output"
    TASK_COMPLETE = "task_complete"
    REQUEST_FAILED = "request_failed"
    RESUME_TASK = "resume_task"
    RESUME_COMPLETED_TASK = "resume_completed_task"


class NoticeKind(str, Enum):
    TEXT = "text"
    REQUEST_STARTED = "request_started"
    REQUEST_FINISHED = "request_finished"
    REQUEST_RETRIED = "request_retried"
    COMMAND_OUTPUT = "command_output"


class ResponseKind(str, Enum):
    MESSAGE = "message"
    AFFIRM = "affirm"
    DENY = "deny"


class HostCommandKind(str, Enum):
    NEW_TASK = "new_task"
    CLEAR_TASK = "clear_task"
    SELECT_IMAGES = "select_images"


class EventShapeError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class AgentEvent:
    sequence_id: int
    kind: EventKind
    request_kind: RequestKind | None = None
    notice_kind: NoticeKind | None = None
    text: str | None = None
    attachments: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.kind is EventKind.REQUEST:
            if self.request_kind is None or self.notice_kind is not None:
                raise EventShapeError(f"event {self.sequence_id}: request events carry request_kind only")
        elif self.notice_kind is None or self.request_kind is not None:
            raise EventShapeError(f"event {self.sequence_id}: notice events carry notice_kind only")

    def is_request(self, kind: RequestKind | None = None) -> bool:
        if self.kind is not EventKind.REQUEST:
            return False
        return kind is None or self.request_kind is kind

    def is_notice(self, kind: NoticeKind | None = None) -> bool:
        if self.kind is not EventKind.NOTICE:
            return False
        return kind is None or self.notice_kind is kind

    @property
    def kind_label(self) -> str:
        sub = self.request_kind if self.kind is EventKind.REQUEST else self.notice_kind
        return f"{self.kind.value}:{sub.value if sub is not None else '?'}"

    @staticmethod
    def request(sequence_id: int, kind: RequestKind, text: str | None = None, attachments=()) -> "AgentEvent":
        return AgentEvent(
            sequence_id=sequence_id,
            kind=EventKind.REQUEST,
            request_kind=kind,
            text=text,
            attachments=tuple(attachments),
        )

    @staticmethod
    def notice(sequence_id: int, kind: NoticeKind, text: str | None = None, attachments=()) -> "AgentEvent":
        return AgentEvent(
            sequence_id=sequence_id,
            kind=EventKind.NOTICE,
            notice_kind=kind,
            text=text,
            attachments=tuple(attachments),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "sequence_id": self.sequence_id,
            "kind": self.kind.value,
        }
        if self.request_kind is not None:
            out["request_kind"] = self.request_kind.value
        if self.notice_kind is not None:
            out["notice_kind"] = self.notice_kind.value
        if self.text is not None:
            out["text"] = self.text
        if self.attachments:
            out["attachments"] = list(self.attachments)
        return out

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "AgentEvent":
        try:
            kind = EventKind(str(raw["kind"]))
            request_kind = RequestKind(str(raw["request_kind"])) if raw.get("request_kind") is not None else None
            notice_kind = NoticeKind(str(raw["notice_kind"])) if raw.get("notice_kind") is not None else None
            sequence_id = int(raw["sequence_id"])
        except KeyError as e:
            raise EventShapeError(f"missing field {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            raise EventShapeError(str(e)) from e
        attachments = raw.get("attachments") or []
        if not isinstance(attachments, list):
            raise EventShapeError(f"event {sequence_id}: attachments must be a list")
        return AgentEvent(
            sequence_id=sequence_id,
            kind=kind,
            request_kind=request_kind,
            notice_kind=notice_kind,
            text=str(raw["text"]) if raw.get("text") is not None else None,
            attachments=tuple(str(a) for a in attachments),
        )


@dataclass(frozen=True, slots=True)
class Response:
    kind: ResponseKind
    text: str | None = None
    attachments: tuple[str, ...] = ()

    @staticmethod
    def message(text: str, attachments=()) -> "Response":
        return Response(kind=ResponseKind.MESSAGE, text=text, attachments=tuple(attachments))

    @staticmethod
    def affirm() -> "Response":
        return Response(kind=ResponseKind.AFFIRM)

    @staticmethod
    def deny() -> "Response":
        return Response(kind=ResponseKind.DENY)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind.value}
        if self.kind is ResponseKind.MESSAGE:
            out["text"] = self.text or ""
            out["attachments"] = list(self.attachments)
        return out


@dataclass(frozen=True, slots=True)
class HostCommand:
    kind: HostCommandKind
    text: str | None = None
    attachments: tuple[str, ...] = ()
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"command": self.kind.value}
        if self.text is not None:
            out["text"] = self.text
        if self.attachments:
            out["attachments"] = list(self.attachments)
        if self.meta:
            out["meta"] = dict(self.meta)
        return out
