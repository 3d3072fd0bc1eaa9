from __future__ import annotations

import json
import logging
import queue
import shutil
import sys
import threading
import time
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from ..runtime.folding import ApiCallEntry, CommandEntry, FoldedEntry, PassthroughEntry
from ..runtime.metrics import ApiMetrics, format_tokens, render_metrics_line
from ..runtime.protocol import AgentEvent, NoticeKind, RequestKind
from ..runtime.turn_state import TurnState

logger = logging.getLogger(__name__)

COLLAPSED_OUTPUT_LINES = 8
_SUMMARY_CHARS = 96


class UIEventKind(str, Enum):
    SESSION_STARTED = "session_started"
    CLEAR_SCREEN = "clear_screen"

    TASK = "task"
    ENTRIES = "entries"
    ENTRY_DETAIL = "entry_detail"
    METRICS = "metrics"
    TURN_STATE = "turn_state"
    USER_SUBMITTED = "user_submitted"

    WARNING = "warning"
    LOG = "log"
    ERROR_RAISED = "error_raised"

    EXIT_REQUESTED = "exit_requested"


@dataclass(frozen=True, slots=True)
class UIEvent:
    kind: UIEventKind
    payload: dict


def _one_line(text: str | None, limit: int = _SUMMARY_CHARS) -> str:
    s = " ".join((text or "").split())
    if len(s) <= limit:
        return s
    return s[: limit - 1] + "…"


def _images_suffix(attachments: Sequence[str]) -> str:
    n = len(attachments)
    if not n:
        return ""
    return f" [{n} image{'s' if n != 1 else ''}]"


def format_task_lines(task: AgentEvent | None) -> list[str]:
    if task is None:
        return ["Task: (none)"]
    text = (task.text or "").strip()
    lines = text.splitlines() or [""]
    out = [f"Task: {lines[0]}{_images_suffix(task.attachments)}"]
    out.extend(f"      {line}" for line in lines[1:])
    return out


def format_usage(entry: ApiCallEntry, *, show_cache: bool = True) -> str:
    u = entry.usage
    parts: list[str] = []
    if u.tokens_in is not None or u.tokens_out is not None:
        t_in = format_tokens(u.tokens_in) if u.tokens_in is not None else "?"
        t_out = format_tokens(u.tokens_out) if u.tokens_out is not None else "?"
        parts.append(f"↑{t_in} ↓{t_out}")
    if show_cache and (u.cache_writes is not None or u.cache_reads is not None):
        parts.append(f"cache +{format_tokens(u.cache_writes or 0)} →{format_tokens(u.cache_reads or 0)}")
    if u.cost_usd is not None:
        parts.append(f"${u.cost_usd:.4f}")
    return " | ".join(parts) if parts else "usage unknown"


def _request_summary(entry: ApiCallEntry) -> str:
    request = entry.request_payload.get("request")
    if isinstance(request, str) and request.strip():
        return _one_line(request)
    return ""


def format_api_status(entry: ApiCallEntry, *, show_cache: bool = True) -> str:
    retried = " (retried)" if entry.retried else ""
    if entry.in_flight:
        return f"[api] in progress{retried}"
    return f"[api] {format_usage(entry, show_cache=show_cache)}{retried}"


def format_entry_lines(entry: FoldedEntry, *, expanded: bool = False, show_cache: bool = True) -> list[str]:
    """Static, line-mode rendering of one folded entry."""

    if isinstance(entry, CommandEntry):
        state = " (running)" if entry.still_running else ""
        out = [f"$ {entry.command}{state}"]
        output_lines = entry.accumulated_output.splitlines()
        if not expanded and len(output_lines) > COLLAPSED_OUTPUT_LINES:
            hidden = len(output_lines) - COLLAPSED_OUTPUT_LINES
            out.append(f"  … {hidden} earlier line{'s' if hidden != 1 else ''}")
            output_lines = output_lines[-COLLAPSED_OUTPUT_LINES:]
        out.extend(f"  {line}" for line in output_lines)
        return out

    if isinstance(entry, ApiCallEntry):
        out = [format_api_status(entry, show_cache=show_cache)]
        summary = _request_summary(entry)
        if expanded and entry.request_payload:
            dumped = json.dumps(entry.request_payload, ensure_ascii=False, indent=2)
            out.extend(f"  {line}" for line in dumped.splitlines())
        elif summary:
            out.append(f"  {summary}")
        return out

    return _format_event_lines(entry.event)


def _format_event_lines(ev: AgentEvent) -> list[str]:
    text = (ev.text or "").rstrip()
    suffix = _images_suffix(ev.attachments)
    if ev.is_notice(NoticeKind.TEXT):
        prefix = "Agent: "
    elif ev.is_notice(NoticeKind.COMMAND_OUTPUT):
        prefix = "  "
    elif ev.is_request(RequestKind.FOLLOW_UP):
        prefix = "Question: "
    elif ev.is_request(RequestKind.TOOL_USE):
        prefix = "[tool] "
    elif ev.is_request(RequestKind.TASK_COMPLETE):
        prefix = "Task completed: "
    elif ev.is_request(RequestKind.COMMAND_OUTPUT):
        prefix = "[stdin] "
    else:
        prefix = f"[{ev.kind_label}] "
    lines = text.splitlines() or [""]
    out = [f"{prefix}{lines[0]}{suffix}".rstrip()]
    pad = " " * len(prefix)
    out.extend(f"{pad}{line}" for line in lines[1:])
    return out


def format_affordances(turn: TurnState) -> str:
    buttons: list[str] = []
    if turn.primary_label:
        state = "" if turn.primary_enabled else " (disabled)"
        buttons.append(f"[{turn.primary_label}] /approve{state}")
    if turn.secondary_label:
        state = "" if turn.secondary_enabled else " (disabled)"
        buttons.append(f"[{turn.secondary_label}] /reject{state}")
    if not turn.input_enabled:
        buttons.append("waiting for agent…")
    elif turn.is_piping_to_stdin:
        buttons.append("input goes to command stdin")
    return "  ".join(buttons)


@dataclass(slots=True)
class _Rendered:
    output_chars: int = 0
    completed: bool = False
    retried: bool = False


class ConsoleUI:
    """
    Single-writer, event-driven console UI (line-mode).

    - Only the renderer thread writes to stdout.
    - All other threads call `emit()` to enqueue UIEvents.
    - Entries are printed incrementally: new command output and API completions
      are appended below what was already printed, never redrawn.
    """

    def __init__(self, *, stream=None, enable_color: bool = True) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._ansi = bool(getattr(self._stream, "isatty", lambda: False)())
        self._enable_color = enable_color and self._ansi

        self._q: "queue.Queue[UIEvent]" = queue.Queue()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

        # Render state
        self._rendered: dict[int, _Rendered] = {}
        self._line_open = False
        self._waiting_for_api = False
        self._spinner_frame = 0
        self._last_spinner_paint = 0.0
        self._plain_waiting_printed = False
        self._last_metrics: str | None = None
        self._last_affordances: str | None = None

    # --- lifecycle ---
    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._render_loop, name="agentdeck-ui", daemon=True)
        self._thread.start()

    def stop(self, *, join_timeout_s: float = 1.0) -> None:
        self._stop.set()
        self.emit(UIEvent(UIEventKind.EXIT_REQUESTED, {"code": 0}))
        t = self._thread
        self._thread = None
        if t is not None:
            t.join(timeout=join_timeout_s)
            if not t.is_alive():
                self.drain()

    def emit(self, event: UIEvent) -> None:
        self._q.put_nowait(event)

    def drain(self) -> None:
        """Render everything queued so far on the calling thread (no render thread running)."""

        while True:
            try:
                ev = self._q.get_nowait()
            except queue.Empty:
                return
            self._handle_event(ev)

    # --- high level helpers ---
    def print_header(self, *, events_path: str, model_id: str) -> None:
        self.emit(UIEvent(UIEventKind.SESSION_STARTED, {"events_path": events_path, "model_id": model_id}))

    def warn(self, message: str) -> None:
        self.emit(UIEvent(UIEventKind.WARNING, {"message": message}))

    def log(self, message: str, *, level: str = "info") -> None:
        self.emit(UIEvent(UIEventKind.LOG, {"level": level, "message": message}))

    # --- rendering ---
    def _render_loop(self) -> None:
        tick_interval_s = 0.08
        while not self._stop.is_set():
            try:
                ev = self._q.get(timeout=tick_interval_s)
            except queue.Empty:
                self._tick()
                continue
            try:
                self._handle_event(ev)
            except Exception:
                # UI must not crash the process.
                logger.exception("failed to render %s", ev.kind.value)

        self._clear_spinner_line()

    def _tick(self) -> None:
        if not self._waiting_for_api:
            return
        if not self._ansi:
            return
        now = time.monotonic()
        if (now - self._last_spinner_paint) < 0.06:
            return
        self._last_spinner_paint = now
        self._paint_spinner()

    def _handle_event(self, ev: UIEvent) -> None:
        k = ev.kind
        p = ev.payload

        if k is UIEventKind.SESSION_STARTED:
            self._println_dim(f"Events: {p.get('events_path', '')}  Model: {p.get('model_id', '')}")
            self._println_dim("Commands: /approve /reject /attach /new /clear /help /exit. Ctrl+J inserts a newline.")
            return

        if k is UIEventKind.CLEAR_SCREEN:
            self._stop_waiting(clear_line=True)
            self._reset_render_state()
            if self._ansi:
                # Clear screen + move cursor home.
                self._write("\x1b[2J\x1b[H")
            else:
                self._println()
            return

        if k is UIEventKind.TASK:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            lines = format_task_lines(p.get("task"))
            self._println(self._color(lines[0], "1"))
            for line in lines[1:]:
                self._println(line)
            return

        if k is UIEventKind.ENTRIES:
            self._render_entries(p.get("entries") or (), show_cache=bool(p.get("show_cache", True)))
            return

        if k is UIEventKind.ENTRY_DETAIL:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            entry = p["entry"]
            for line in format_entry_lines(entry, expanded=True, show_cache=bool(p.get("show_cache", True))):
                self._println_dim(line)
            return

        if k is UIEventKind.METRICS:
            metrics = p.get("metrics")
            if not isinstance(metrics, ApiMetrics):
                return
            line = render_metrics_line(metrics, show_cache=bool(p.get("show_cache", True)))
            if line == self._last_metrics and not p.get("force"):
                return
            self._last_metrics = line
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            self._println_dim(line)
            return

        if k is UIEventKind.TURN_STATE:
            turn = p.get("turn")
            if not isinstance(turn, TurnState):
                return
            line = format_affordances(turn)
            if not line or line == self._last_affordances:
                self._last_affordances = line
                return
            self._last_affordances = line
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            self._println(self._color(line, "1;36"))
            return

        if k is UIEventKind.USER_SUBMITTED:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            text = str(p.get("text", "") or "")
            prefix = self._color("You: ", "1;32")
            self._println(prefix + text + _images_suffix(p.get("attachments") or ()))
            return

        if k is UIEventKind.WARNING:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            self._println_yellow(f"[warn] {p.get('message', '')}")
            return

        if k is UIEventKind.LOG:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            level = str(p.get("level", "info"))
            msg = str(p.get("message", "") or "")
            if msg:
                self._println_dim(f"[{level}] {msg}")
            return

        if k is UIEventKind.ERROR_RAISED:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            msg = str(p.get("message", "") or "")
            code = str(p.get("code", "") or "")
            prefix = f"[error] {code}: " if code else "[error] "
            self._println_red(prefix + msg)
            return

        if k is UIEventKind.EXIT_REQUESTED:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            return

    def _render_entries(self, entries: Sequence[FoldedEntry], *, show_cache: bool) -> None:
        for entry in entries:
            seen = self._rendered.get(entry.sequence_id)
            if isinstance(entry, CommandEntry):
                self._render_command(entry, seen)
            elif isinstance(entry, ApiCallEntry):
                self._render_api_call(entry, seen, show_cache=show_cache)
            elif seen is None:
                self._stop_waiting(clear_line=True)
                self._close_open_line()
                self._print_event(entry)
                self._rendered[entry.sequence_id] = _Rendered()

        last = entries[-1] if entries else None
        if isinstance(last, ApiCallEntry) and last.in_flight:
            if not self._waiting_for_api:
                self._waiting_for_api = True
                self._spinner_frame = 0
                self._last_spinner_paint = 0.0
                self._plain_waiting_printed = False
                self._paint_spinner()
        else:
            self._stop_waiting(clear_line=True)

    def _render_command(self, entry: CommandEntry, seen: _Rendered | None) -> None:
        if seen is None:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            self._println(self._color(f"$ {entry.command}", "1"))
            seen = self._rendered[entry.sequence_id] = _Rendered()
        new_output = entry.accumulated_output[seen.output_chars :]
        if not new_output:
            return
        self._stop_waiting(clear_line=True)
        seen.output_chars = len(entry.accumulated_output)
        self._write(self._color(new_output, "2"))
        self._line_open = not new_output.endswith("\n")

    def _render_api_call(self, entry: ApiCallEntry, seen: _Rendered | None, *, show_cache: bool) -> None:
        if seen is None:
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            self._rendered[entry.sequence_id] = _Rendered(completed=entry.completed, retried=entry.retried)
            self._println_dim(format_api_status(entry, show_cache=show_cache))
            summary = _request_summary(entry)
            if summary:
                self._println_dim(f"  {summary}")
            return
        if entry.retried and not seen.retried:
            seen.retried = True
            if not entry.completed:
                self._stop_waiting(clear_line=True)
                self._close_open_line()
                self._println_yellow("[api] request retried")
        if entry.completed and not seen.completed:
            seen.completed = True
            self._stop_waiting(clear_line=True)
            self._close_open_line()
            self._println_dim(format_api_status(entry, show_cache=show_cache))

    def _print_event(self, entry: PassthroughEntry) -> None:
        lines = _format_event_lines(entry.event)
        ev = entry.event
        if ev.is_notice(NoticeKind.TEXT):
            self._println(self._color("Agent: ", "1;36") + lines[0][len("Agent: ") :])
            for line in lines[1:]:
                self._println(line)
            return
        if ev.is_request(RequestKind.TASK_COMPLETE):
            for line in lines:
                self._println(self._color(line, "1;32"))
            return
        if ev.is_request():
            for line in lines:
                self._println_yellow(line)
            return
        for line in lines:
            self._println_dim(line)

    def _reset_render_state(self) -> None:
        self._rendered.clear()
        self._line_open = False
        self._last_metrics = None
        self._last_affordances = None

    # --- low-level printing ---
    def _color(self, s: str, code: str) -> str:
        if not self._enable_color:
            return s
        return f"\x1b[{code}m{s}\x1b[0m"

    def _write(self, s: str) -> None:
        self._stream.write(s)
        flush = getattr(self._stream, "flush", None)
        if flush is not None:
            flush()

    def _println(self, s: str = "") -> None:
        self._write(s + "\n")
        self._line_open = False

    def _println_dim(self, s: str) -> None:
        self._println(self._color(s, "2"))

    def _println_red(self, s: str) -> None:
        self._println(self._color(s, "31"))

    def _println_yellow(self, s: str) -> None:
        self._println(self._color(s, "33"))

    def _close_open_line(self) -> None:
        if self._line_open:
            self._println()

    def _stop_waiting(self, *, clear_line: bool) -> None:
        if not self._waiting_for_api:
            return
        self._waiting_for_api = False
        if clear_line:
            self._clear_spinner_line()

    def _clear_spinner_line(self) -> None:
        if not self._ansi:
            return
        self._write("\r\x1b[2K\r")

    def _paint_spinner(self) -> None:
        if not self._waiting_for_api:
            return
        if not self._ansi:
            if not self._plain_waiting_printed:
                self._println_dim("Waiting for API…")
                self._plain_waiting_printed = True
            return
        frames: Sequence[str] = ("◌", "◍", "●", "◍")
        ch = frames[self._spinner_frame % len(frames)]
        self._spinner_frame += 1

        cols = shutil.get_terminal_size((80, 20)).columns
        max_cols = max(20, int(cols) - 1)
        line = f"{ch} Waiting for API…"
        if self._last_metrics:
            avail = max(0, max_cols - self._display_width(line) - 3)
            line = f"{line} ({self._elide_tail(self._last_metrics, avail)})" if avail > 10 else line

        # Wrapping breaks in-place updates.
        line = self._truncate_to_width(line, max_cols)
        self._write("\r\x1b[2K\r" + line)

    def _display_width(self, s: str) -> int:
        w = 0
        for ch in s:
            if unicodedata.combining(ch):
                continue
            eaw = unicodedata.east_asian_width(ch)
            w += 2 if eaw in {"W", "F"} else 1
        return w

    def _truncate_to_width(self, s: str, width: int) -> str:
        if width <= 0:
            return ""
        if self._display_width(s) <= width:
            return s
        out: list[str] = []
        used = 0
        for ch in s:
            if unicodedata.combining(ch):
                out.append(ch)
                continue
            eaw = unicodedata.east_asian_width(ch)
            cw = 2 if eaw in {"W", "F"} else 1
            if used + cw > width:
                break
            out.append(ch)
            used += cw
        return "".join(out)

    def _elide_tail(self, s: str, width: int) -> str:
        if width <= 0:
            return ""
        if self._display_width(s) <= width:
            return s
        # Keep tail with a leading ellipsis.
        if width == 1:
            return "…"
        target = width - 1
        out_rev: list[str] = []
        used = 0
        for ch in reversed(s):
            if unicodedata.combining(ch):
                out_rev.append(ch)
                continue
            eaw = unicodedata.east_asian_width(ch)
            cw = 2 if eaw in {"W", "F"} else 1
            if used + cw > target:
                break
            out_rev.append(ch)
            used += cw
        return "…" + "".join(reversed(out_rev))
