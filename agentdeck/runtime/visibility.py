from __future__ import annotations

from typing import Iterable

from .folding import FoldedEntry, PassthroughEntry
from .protocol import AgentEvent, NoticeKind, RequestKind

_BOOKKEEPING_REQUESTS = {
    RequestKind.REQUEST_FAILED,
    RequestKind.RESUME_TASK,
    RequestKind.RESUME_COMPLETED_TASK,
}
_TERMINAL_NOTICES = {
    NoticeKind.REQUEST_FINISHED,
    NoticeKind.REQUEST_RETRIED,
}


def is_visible(entry: FoldedEntry) -> bool:
    if not isinstance(entry, PassthroughEntry):
        return True
    return _event_is_visible(entry.event)


def _event_is_visible(ev: AgentEvent) -> bool:
    if ev.is_request(RequestKind.TASK_COMPLETE):
        # Only an explicitly empty summary hides the completion.
        return ev.text != ""
    if ev.is_request() and ev.request_kind in _BOOKKEEPING_REQUESTS:
        return False
    if ev.is_notice() and ev.notice_kind in _TERMINAL_NOTICES:
        return False
    if ev.is_notice(NoticeKind.TEXT):
        return bool(ev.text) or bool(ev.attachments)
    return True


def visible_entries(entries: Iterable[FoldedEntry]) -> list[FoldedEntry]:
    return [entry for entry in entries if is_visible(entry)]
