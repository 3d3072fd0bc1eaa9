"""
Turn-taking state derived from the tail of the event log.

There is no stored state machine: `derive_transition` projects a single event
(plus the one before it) onto the affordances it enables, and `derive_state`
resolves "no transition" by walking back to the most recent event that does
define one. Whatever the user did since then is layered on top by
`ChatController`, keyed on `TurnState.source_sequence_id`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from .protocol import AgentEvent, NoticeKind, RequestKind, Response

PRIMARY_APPROVE = "Approve"
PRIMARY_RUN_COMMAND = "Run Command"
PRIMARY_EXIT_COMMAND = "Exit Command"
PRIMARY_CONTINUE = "Continue"
SECONDARY_REJECT = "Reject"

PLACEHOLDER_MESSAGE = "Type a message..."
PLACEHOLDER_STDIN = "Type input to command stdin..."


class InputTarget(str, Enum):
    NEW_MESSAGE = "new_message"
    COMMAND_STDIN = "command_stdin"


@dataclass(frozen=True, slots=True)
class TurnState:
    source_sequence_id: int | None
    request_kind: RequestKind | None
    input_enabled: bool
    input_target: InputTarget = InputTarget.NEW_MESSAGE
    primary_label: str | None = None
    secondary_label: str | None = None
    buttons_enabled: bool = False
    clears_input: bool = False

    @property
    def is_piping_to_stdin(self) -> bool:
        return self.input_target is InputTarget.COMMAND_STDIN

    @property
    def placeholder(self) -> str:
        return PLACEHOLDER_STDIN if self.is_piping_to_stdin else PLACEHOLDER_MESSAGE

    @property
    def primary_enabled(self) -> bool:
        return self.buttons_enabled and self.primary_label is not None

    @property
    def secondary_enabled(self) -> bool:
        return self.buttons_enabled and self.secondary_label is not None


IDLE = TurnState(source_sequence_id=None, request_kind=None, input_enabled=True)

# request kind -> (primary label, secondary label, input target)
_AFFORDANCES: dict[RequestKind, tuple[str | None, str | None, InputTarget]] = {
    RequestKind.FOLLOW_UP: (None, None, InputTarget.NEW_MESSAGE),
    RequestKind.TOOL_USE: (PRIMARY_APPROVE, SECONDARY_REJECT, InputTarget.NEW_MESSAGE),
    RequestKind.RUN_COMMAND: (PRIMARY_RUN_COMMAND, SECONDARY_REJECT, InputTarget.NEW_MESSAGE),
    RequestKind.COMMAND_OUTPUT: (PRIMARY_EXIT_COMMAND, None, InputTarget.COMMAND_STDIN),
    RequestKind.TASK_COMPLETE: (PRIMARY_CONTINUE, None, InputTarget.NEW_MESSAGE),
}

_AFFIRMABLE = {
    RequestKind.TOOL_USE,
    RequestKind.RUN_COMMAND,
    RequestKind.COMMAND_OUTPUT,
    RequestKind.TASK_COMPLETE,
}
_DENIABLE = {
    RequestKind.TOOL_USE,
    RequestKind.RUN_COMMAND,
}


def derive_transition(last: AgentEvent, previous: AgentEvent | None = None) -> TurnState | None:
    if last.is_request():
        assert last.request_kind is not None
        spec = _AFFORDANCES.get(last.request_kind)
        if spec is None:
            # request_failed / resume_*: bookkeeping, leaves the input as it was.
            return None
        primary, secondary, target = spec
        return TurnState(
            source_sequence_id=last.sequence_id,
            request_kind=last.request_kind,
            input_enabled=True,
            input_target=target,
            primary_label=primary,
            secondary_label=secondary,
            buttons_enabled=primary is not None or secondary is not None,
        )

    if (
        last.is_notice(NoticeKind.REQUEST_STARTED)
        and previous is not None
        and previous.is_request(RequestKind.COMMAND_OUTPUT)
    ):
        # The agent moved on after the command exited; drop anything typed for stdin.
        return TurnState(
            source_sequence_id=last.sequence_id,
            request_kind=None,
            input_enabled=False,
            clears_input=True,
        )

    return None


def derive_state(events: Sequence[AgentEvent]) -> TurnState:
    for idx in range(len(events) - 1, -1, -1):
        previous = events[idx - 1] if idx > 0 else None
        state = derive_transition(events[idx], previous)
        if state is not None:
            return state
    return IDLE


def awaiting_agent(source_sequence_id: int | None) -> TurnState:
    """State after the user answered: nothing is pending until the agent speaks again."""

    return TurnState(source_sequence_id=source_sequence_id, request_kind=None, input_enabled=False)


def primary_response(request_kind: RequestKind | None) -> Response | None:
    if request_kind in _AFFIRMABLE:
        return Response.affirm()
    return None


def secondary_response(request_kind: RequestKind | None) -> Response | None:
    if request_kind in _DENIABLE:
        return Response.deny()
    return None
