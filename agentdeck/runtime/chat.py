from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from .attachments import MAX_IMAGES_PER_MESSAGE, PastedItem, decode_pasted_images, stage_attachments
from .folding import FoldedEntry, fold_events, split_task
from .metrics import ApiMetrics, get_api_metrics
from .models import ModelInfo, get_model_info
from .protocol import AgentEvent, HostCommand, HostCommandKind, Response
from .turn_state import TurnState, awaiting_agent, derive_state, primary_response, secondary_response
from .visibility import visible_entries

logger = logging.getLogger(__name__)

ResponseSink = Callable[[Response], None]
CommandSink = Callable[[HostCommand], None]

_NOTHING_ANSWERED = object()


@dataclass(frozen=True, slots=True)
class ChatView:
    task: AgentEvent | None
    entries: tuple[FoldedEntry, ...]
    visible: tuple[FoldedEntry, ...]
    metrics: ApiMetrics
    turn: TurnState
    draft: str
    staged_attachments: tuple[str, ...]
    can_attach: bool
    show_cache: bool


class ChatController:
    """
    Holds what the user did on top of the derived log views.

    Everything about the conversation is recomputed from the snapshot passed to
    `update()`. The only local state is the draft, the staged attachments, the
    expanded rows, and which request (by source sequence id) has already been
    answered, so a second press before the agent replies sends nothing.
    """

    def __init__(
        self,
        send: ResponseSink,
        *,
        command: CommandSink | None = None,
        model: ModelInfo | None = None,
        max_images: int = MAX_IMAGES_PER_MESSAGE,
    ) -> None:
        self._send = send
        self._command = command
        self._model = model or get_model_info(None)
        self._max_images = max(0, min(int(max_images), MAX_IMAGES_PER_MESSAGE))

        self._events: tuple[AgentEvent, ...] = ()
        self._task: AgentEvent | None = None
        self._entries: tuple[FoldedEntry, ...] = ()
        self._visible: tuple[FoldedEntry, ...] = ()
        self._metrics = ApiMetrics()

        self._answered: object = _NOTHING_ANSWERED
        self._cleared_source: int | None = None
        self._draft = ""
        self._staged: list[str] = []
        self._expanded: set[int] = set()

    # --- inbound ---
    def update(self, snapshot: Sequence[AgentEvent]) -> ChatView:
        self._events = tuple(snapshot)
        task, rest = split_task(self._events)
        entries = fold_events(rest)
        self._task = task
        self._entries = tuple(entries)
        # Metrics must see every entry, including the ones hidden below.
        self._metrics = get_api_metrics(entries)
        self._visible = tuple(visible_entries(entries))

        turn = self.turn
        if turn.clears_input and turn.source_sequence_id != self._cleared_source:
            self._cleared_source = turn.source_sequence_id
            self._draft = ""
            self._staged = []
        return self.view

    def on_became_visible(self, *, hidden: bool = False) -> bool:
        """Whether the input should take focus."""

        turn = self.turn
        return not hidden and turn.input_enabled and not turn.buttons_enabled

    def on_attachments_selected(self, refs: Iterable[str]) -> list[str]:
        before = len(self._staged)
        self._staged = stage_attachments(self._staged, refs, cap=self._max_images)
        return self._staged[before:]

    # --- derived ---
    @property
    def model(self) -> ModelInfo:
        return self._model

    @property
    def turn(self) -> TurnState:
        derived = derive_state(self._events)
        if self._answered is not _NOTHING_ANSWERED and derived.source_sequence_id == self._answered:
            return awaiting_agent(derived.source_sequence_id)
        return derived

    @property
    def can_attach(self) -> bool:
        turn = self.turn
        return (
            self._model.supports_images
            and turn.input_enabled
            and not turn.is_piping_to_stdin
            and len(self._staged) < self._max_images
        )

    @property
    def view(self) -> ChatView:
        return ChatView(
            task=self._task,
            entries=self._entries,
            visible=self._visible,
            metrics=self._metrics,
            turn=self.turn,
            draft=self._draft,
            staged_attachments=tuple(self._staged),
            can_attach=self.can_attach,
            show_cache=self._model.supports_prompt_cache,
        )

    @property
    def staged_attachments(self) -> tuple[str, ...]:
        return tuple(self._staged)

    @property
    def draft(self) -> str:
        return self._draft

    # --- user actions ---
    def set_draft(self, text: str) -> None:
        self._draft = text

    def submit(self, text: str | None = None) -> Response | HostCommand | None:
        turn = self.turn
        if not turn.input_enabled:
            return None
        body = (self._draft if text is None else text).strip()
        if not body and not self._staged:
            return None
        if self._task is None and self._command is not None:
            # Nothing to reply to yet: the first message defines the task.
            return self.new_task(body, self._staged)
        response = Response.message(body, self._staged)
        self._emit(response, turn)
        self._draft = ""
        self._staged = []
        return response

    def press_primary(self) -> Response | None:
        turn = self.turn
        if not turn.primary_enabled:
            return None
        response = primary_response(turn.request_kind)
        if response is not None:
            self._emit(response, turn)
        return response

    def press_secondary(self) -> Response | None:
        turn = self.turn
        if not turn.secondary_enabled:
            return None
        response = secondary_response(turn.request_kind)
        if response is not None:
            self._emit(response, turn)
        return response

    def paste(self, items: Iterable[PastedItem]) -> list[str]:
        if not self.can_attach:
            return []
        return self.on_attachments_selected(decode_pasted_images(items))

    def remove_attachment(self, index: int) -> str | None:
        if index < 0 or index >= len(self._staged):
            return None
        return self._staged.pop(index)

    def clear_attachments(self) -> None:
        self._staged = []

    def toggle_expanded(self, sequence_id: int) -> bool:
        if sequence_id in self._expanded:
            self._expanded.discard(sequence_id)
            return False
        self._expanded.add(sequence_id)
        return True

    def is_expanded(self, sequence_id: int) -> bool:
        return sequence_id in self._expanded

    # --- host commands ---
    def new_task(self, text: str, attachments: Iterable[str] = ()) -> HostCommand | None:
        body = text.strip()
        images = stage_attachments([], attachments, cap=self._max_images)
        if not body and not images:
            return None
        cmd = HostCommand(kind=HostCommandKind.NEW_TASK, text=body, attachments=tuple(images))
        self._reset_local()
        self._emit_command(cmd)
        return cmd

    def clear_task(self) -> HostCommand:
        cmd = HostCommand(kind=HostCommandKind.CLEAR_TASK)
        self._reset_local()
        self._emit_command(cmd)
        return cmd

    def reset(self) -> None:
        """Forget answered turns and local input state when the event history is replaced."""
        self._reset_local()

    def request_image_selection(self) -> HostCommand | None:
        if not self.can_attach:
            return None
        cmd = HostCommand(kind=HostCommandKind.SELECT_IMAGES)
        self._emit_command(cmd)
        return cmd

    # --- internals ---
    def _emit(self, response: Response, turn: TurnState) -> None:
        logger.debug(
            "response %s for %s (source=%s)",
            response.kind.value,
            turn.request_kind.value if turn.request_kind is not None else "-",
            turn.source_sequence_id,
        )
        # A sink failure propagates and leaves the turn unanswered.
        self._send(response)
        self._answered = turn.source_sequence_id

    def _emit_command(self, cmd: HostCommand) -> None:
        if self._command is None:
            logger.debug("no command sink; dropping %s", cmd.kind.value)
            return
        self._command(cmd)

    def _reset_local(self) -> None:
        self._answered = _NOTHING_ANSWERED
        self._draft = ""
        self._staged = []
        self._expanded.clear()
