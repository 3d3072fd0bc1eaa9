from __future__ import annotations

import argparse
import json
import logging
import shlex
import sys
import threading
from dataclasses import replace
from pathlib import Path

from . import __version__
from .runtime.attachments import items_from_paths
from .runtime.chat import ChatController, ChatView
from .runtime.config import ConfigError, ViewerConfig, load_viewer_config
from .runtime.error_codes import ErrorCode
from .runtime.event_log import EventLog, EventOrderError
from .runtime.folding import ApiCallEntry, fold_events, split_task
from .runtime.log import setup_logger
from .runtime.metrics import get_api_metrics, render_metrics_line
from .runtime.models import KNOWN_MODELS, describe_model
from .runtime.project import RuntimePaths
from .runtime.protocol import HostCommand, Response
from .runtime.stores import FileEventLogStore, FileResponseStore
from .runtime.turn_state import derive_state
from .runtime.validate import validate_events_file
from .runtime.visibility import visible_entries
from .ui.console_ui import ConsoleUI, UIEvent, UIEventKind, format_affordances, format_entry_lines, format_task_lines

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_VALIDATION_FAILED = 3
EXIT_CONFIG_ERROR = 5

logger = logging.getLogger(__name__)

_HELP_LINES = (
    "/approve (/yes)        press the primary button",
    "/reject (/no)          press the secondary button",
    "/attach PATH...        stage images for the next message",
    "/images                list staged images",
    "/drop N                unstage image N",
    "/clear-images          unstage all images",
    "/expand SEQ            show an entry in full",
    "/metrics               show API usage so far",
    "/new TEXT              start a new task",
    "/clear                 clear the current task",
    "/exit                  leave",
)


def _configure_text_io() -> None:
    """
    Best-effort I/O normalization for interactive terminals.

    On WSL/Linux it's common to have sys.stdin.errors='surrogateescape'. If invalid byte
    sequences are read from the terminal/clipboard, Python preserves them as surrogate
    codepoints in the resulting str, which later crashes when encoding to UTF-8 for persistence.
    """

    for stream, errors in ((sys.stdin, "replace"), (sys.stdout, "backslashreplace"), (sys.stderr, "backslashreplace")):
        reconfigure = getattr(stream, "reconfigure", None)
        if reconfigure is None:
            continue
        try:
            reconfigure(encoding="utf-8", errors=errors)
        except (ValueError, OSError):
            return


def _sanitize_text(text: str) -> str:
    # Replace illegal Unicode surrogate codepoints (U+D800..U+DFFF) with U+FFFD.
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


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentdeck",
        description="Chat view over an agent's event log.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    show_parser = subparsers.add_parser("show", help="Render a task's event log.")
    show_parser.add_argument("events", help="Path to an events .jsonl file.")
    show_parser.add_argument(
        "--all",
        action="store_true",
        help="Include bookkeeping entries that the chat view hides, and show entries in full.",
    )
    show_parser.set_defaults(func=_cmd_show)

    metrics_parser = subparsers.add_parser("metrics", help="Aggregate API usage and cost.")
    metrics_parser.add_argument("events", help="Path to an events .jsonl file.")
    metrics_parser.add_argument("--json", action="store_true", help="Print machine-readable JSON.")
    metrics_parser.set_defaults(func=_cmd_metrics)

    validate_parser = subparsers.add_parser("validate", help="Validate an events file.")
    validate_parser.add_argument("events", help="Path to an events .jsonl file.")
    validate_parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat warnings (orphan notices, missing task) as errors.",
    )
    validate_parser.set_defaults(func=_cmd_validate)

    chat_parser = subparsers.add_parser("chat", help="Follow an events file and answer the agent.")
    chat_parser.add_argument("--events", default=None, help="Events file to follow (default: project events).")
    chat_parser.add_argument(
        "--responses",
        default=None,
        help="File to append responses to (default: project responses, or responses.jsonl next to the events).",
    )
    chat_parser.add_argument("--model", default=None, help="Model id (decides image support and cache columns).")
    chat_parser.set_defaults(func=_cmd_chat)

    models_parser = subparsers.add_parser("models", help="List known models.")
    models_parser.set_defaults(func=_cmd_models)

    return parser


def _load_config(model_override: str | None = None) -> tuple[ViewerConfig, RuntimePaths | None]:
    cfg, paths = load_viewer_config()
    if model_override:
        if model_override not in KNOWN_MODELS:
            raise ConfigError(f"--model: unknown model {model_override!r}", source="--model", key="AGENTDECK_MODEL")
        cfg = replace(cfg, model_id=model_override)
    setup_logger(cfg.log_level)
    return cfg, paths


def _read_events_arg(raw: str):
    path = Path(raw).expanduser()
    if not path.exists():
        print(f"Events file not found: {path}", file=sys.stderr)
        return None
    return list(FileEventLogStore(path).read())


def _cmd_show(args: argparse.Namespace) -> int:
    try:
        cfg, _ = _load_config()
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    events = _read_events_arg(args.events)
    if events is None:
        return EXIT_ERROR

    show_all = bool(args.all)
    show_cache = cfg.model.supports_prompt_cache
    task, rest = split_task(events)
    entries = fold_events(rest)
    shown = entries if show_all else visible_entries(entries)

    for line in format_task_lines(task):
        print(line)
    for entry in shown:
        print()
        for line in format_entry_lines(entry, expanded=show_all, show_cache=show_cache):
            print(line)
    print()
    print(render_metrics_line(get_api_metrics(entries), show_cache=show_cache))
    affordances = format_affordances(derive_state(events))
    if affordances:
        print(affordances)
    return EXIT_OK


def _cmd_metrics(args: argparse.Namespace) -> int:
    try:
        cfg, _ = _load_config()
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    events = _read_events_arg(args.events)
    if events is None:
        return EXIT_ERROR

    _, rest = split_task(events)
    entries = fold_events(rest)
    metrics = get_api_metrics(entries)
    calls = [e for e in entries if isinstance(e, ApiCallEntry)]
    if args.json:
        out = metrics.to_dict()
        out["api_calls"] = len(calls)
        out["in_flight"] = sum(1 for c in calls if c.in_flight)
        print(json.dumps(out, ensure_ascii=False))
        return EXIT_OK
    print(render_metrics_line(metrics, show_cache=cfg.model.supports_prompt_cache))
    print(f"{len(calls)} API request(s)")
    return EXIT_OK


def _cmd_validate(args: argparse.Namespace) -> int:
    strict = bool(getattr(args, "strict", False))
    issues = validate_events_file(Path(args.events), strict=strict)

    errors = [i for i in issues if i.severity == "error"]
    for issue in issues:
        stream = sys.stderr if issue.severity == "error" else sys.stdout
        print(issue.render(), file=stream)

    if errors:
        print(f"Validation failed: {len(errors)} error(s), {len(issues) - len(errors)} warning(s).", file=sys.stderr)
        return EXIT_VALIDATION_FAILED
    if issues:
        print(f"Validation passed with {len(issues)} warning(s).", file=sys.stderr)
    else:
        print("OK")
    return EXIT_OK


def _cmd_models(_: argparse.Namespace) -> int:
    try:
        cfg, _ = _load_config()
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    for model_id, info in KNOWN_MODELS.items():
        marker = "*" if model_id == cfg.model_id else " "
        print(f"{marker} {model_id}")
        for line in describe_model(info):
            print(f"    {line}")
    return EXIT_OK


def _cmd_chat(args: argparse.Namespace) -> int:
    try:
        cfg, paths = _load_config(args.model)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    events_path = Path(args.events).expanduser() if args.events else cfg.events_path
    if events_path is None:
        print("No events file: pass --events or run inside a directory with .agentdeck/.", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    if args.responses:
        responses_path = Path(args.responses).expanduser()
    elif cfg.responses_path is not None:
        responses_path = cfg.responses_path
    else:
        responses_path = events_path.with_name("responses.jsonl")
    history_path = paths.history_path if paths is not None else None

    return _run_chat(
        cfg=cfg,
        event_store=FileEventLogStore(events_path),
        response_store=FileResponseStore(responses_path),
        history_path=history_path,
    )


def _is_tty() -> bool:
    try:
        return bool(sys.stdin.isatty() and sys.stdout.isatty())
    except (AttributeError, ValueError):
        return False


def _should_use_prompt_toolkit(cfg: ViewerConfig) -> bool:
    # Let callers (and tests) force plain input mode.
    if cfg.plain_input:
        return False
    if not _is_tty():
        return False
    # If builtins.input is patched (e.g. unittest.mock), prefer plain input so tests can drive the CLI.
    import builtins as _builtins

    mod = getattr(type(getattr(_builtins, "input")), "__module__", "")
    if isinstance(mod, str) and mod.startswith("unittest.mock"):
        return False
    return True


class _ChatSession:
    """
    Glue between the events file, the controller and the console.

    The poller thread feeds the in-memory log; the log's subscriber recomputes
    the view and forwards it to the UI. User actions run on the input thread.
    Both sides touch the controller under one lock.
    """

    def __init__(
        self,
        *,
        cfg: ViewerConfig,
        event_store: FileEventLogStore,
        response_store: FileResponseStore,
        ui: ConsoleUI,
    ) -> None:
        self._cfg = cfg
        self._event_store = event_store
        self._response_store = response_store
        self._ui = ui
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._poller: threading.Thread | None = None
        self._offset = 0
        self._last_task_id: int | None = None
        self._log = EventLog()
        self._controller = ChatController(
            self._send_response,
            command=self._send_command,
            model=cfg.model,
            max_images=cfg.max_images,
        )
        self._log.subscribe(self._on_snapshot)

    @property
    def controller(self) -> ChatController:
        return self._controller

    # --- event side ---
    def poll_once(self) -> int:
        try:
            events, offset = self._event_store.read_new(self._offset)
        except OSError as e:
            logger.warning("failed to read %s: %s", self._event_store.path, e)
            return 0
        self._offset = offset
        if not events:
            return 0
        try:
            self._log.extend(events)
        except EventOrderError as e:
            # The file was rewritten under us; start over from its beginning.
            logger.info("%s; rereading %s", e, self._event_store.path)
            try:
                events, offset = self._event_store.read_new(0)
            except OSError as read_err:
                logger.warning("failed to reread %s: %s", self._event_store.path, read_err)
                return 0
            self._ui.emit(UIEvent(UIEventKind.CLEAR_SCREEN, {}))
            self._last_task_id = None
            with self._lock:
                self._controller.reset()
            try:
                self._log.reset(events)
            except EventOrderError as bad:
                self._ui.warn(f"Events file is out of order ({bad}); run `agentdeck validate` on it.")
                return 0
            self._offset = offset
        return len(events)

    def start_polling(self) -> None:
        if self._poller is not None:
            return
        self._stop.clear()
        self._poller = threading.Thread(target=self._poll_loop, name="agentdeck-poll", daemon=True)
        self._poller.start()

    def stop_polling(self) -> None:
        self._stop.set()
        t = self._poller
        self._poller = None
        if t is not None:
            t.join(timeout=max(1.0, self._cfg.poll_interval_s * 2))

    def _poll_loop(self) -> None:
        while not self._stop.wait(self._cfg.poll_interval_s):
            self.poll_once()

    def _on_snapshot(self, snapshot) -> None:
        with self._lock:
            view = self._controller.update(snapshot)
        self._render(view)

    def _render(self, view: ChatView) -> None:
        task_id = view.task.sequence_id if view.task is not None else None
        if task_id != self._last_task_id:
            self._last_task_id = task_id
            self._ui.emit(UIEvent(UIEventKind.TASK, {"task": view.task}))
        self._ui.emit(UIEvent(UIEventKind.ENTRIES, {"entries": view.visible, "show_cache": view.show_cache}))
        self._ui.emit(UIEvent(UIEventKind.METRICS, {"metrics": view.metrics, "show_cache": view.show_cache}))
        self._ui.emit(UIEvent(UIEventKind.TURN_STATE, {"turn": view.turn}))

    # --- sinks ---
    def _send_response(self, response: Response) -> None:
        # Called by the controller under self._lock, before the turn is marked answered.
        in_reply_to = self._controller.turn.source_sequence_id
        self._response_store.append_response(response, in_reply_to=in_reply_to)

    def _send_command(self, command: HostCommand) -> None:
        self._response_store.append_command(command)

    # --- input side ---
    def toolbar_text(self) -> str:
        with self._lock:
            view = self._controller.view
        parts = [format_affordances(view.turn), render_metrics_line(view.metrics, show_cache=view.show_cache)]
        if view.staged_attachments:
            parts.append(f"{len(view.staged_attachments)} image(s) staged")
        return "  |  ".join(p for p in parts if p)

    def placeholder_text(self) -> str:
        with self._lock:
            return self._controller.turn.placeholder

    def submit(self, text: str) -> None:
        try:
            with self._lock:
                staged = self._controller.staged_attachments
                response = self._controller.submit(text)
                turn = self._controller.turn
        except OSError as e:
            self._write_failed(e)
            return
        if response is None:
            if not turn.input_enabled:
                self._ui.warn("The agent is working; input is disabled until it asks for something.")
            return
        self._ui.emit(UIEvent(UIEventKind.USER_SUBMITTED, {"text": text.strip(), "attachments": staged}))
        self._ui.emit(UIEvent(UIEventKind.TURN_STATE, {"turn": turn}))

    def handle_slash(self, line: str) -> bool:
        """Run one slash command; returns False when the session should end."""

        try:
            parts = shlex.split(line)
        except ValueError as e:
            self._ui.warn(f"Could not parse command: {e}")
            return True
        if not parts:
            return True
        name, rest = parts[0].lower(), parts[1:]

        if name in {"/exit", "/quit"}:
            return False
        if name == "/help":
            for help_line in _HELP_LINES:
                self._ui.log(help_line, level="help")
            return True
        try:
            self._dispatch_slash(name, rest, raw=line)
        except OSError as e:
            self._write_failed(e)
        return True

    def _dispatch_slash(self, name: str, rest: list[str], *, raw: str) -> None:
        ui = self._ui
        c = self._controller

        if name in {"/approve", "/yes"}:
            with self._lock:
                label = c.turn.primary_label
                response = c.press_primary()
                turn = c.turn
            if response is None:
                ui.warn("Nothing to approve right now.")
                return
            ui.log(f"{label} sent.", level="you")
            ui.emit(UIEvent(UIEventKind.TURN_STATE, {"turn": turn}))
            return

        if name in {"/reject", "/no"}:
            with self._lock:
                label = c.turn.secondary_label
                response = c.press_secondary()
                turn = c.turn
            if response is None:
                ui.warn("Nothing to reject right now.")
                return
            ui.log(f"{label} sent.", level="you")
            ui.emit(UIEvent(UIEventKind.TURN_STATE, {"turn": turn}))
            return

        if name == "/attach":
            if not rest:
                ui.warn("Usage: /attach PATH...")
                return
            items = items_from_paths(rest)
            with self._lock:
                if not c.can_attach:
                    allowed = False
                    added: list[str] = []
                else:
                    allowed = True
                    added = c.paste(items)
                staged = len(c.staged_attachments)
            if not allowed:
                ui.warn("Images cannot be attached right now.")
                return
            if len(added) < len(rest):
                ui.warn(f"Attached {len(added)} of {len(rest)} file(s); the rest were not images or over the limit.")
            ui.log(f"{staged} image(s) staged.", level="images")
            return

        if name == "/images":
            with self._lock:
                staged = c.staged_attachments
            if not staged:
                ui.log("No images staged.", level="images")
                return
            for idx, ref in enumerate(staged, start=1):
                mime = ref[5 : ref.find(";")] if ref.startswith("data:") and ";" in ref else "image"
                ui.log(f"{idx}. {mime} ({len(ref) * 3 // 4 // 1024} KB)", level="images")
            return

        if name == "/drop":
            if len(rest) != 1 or not rest[0].isdigit():
                ui.warn("Usage: /drop N")
                return
            with self._lock:
                removed = c.remove_attachment(int(rest[0]) - 1)
            if removed is None:
                ui.warn(f"No staged image #{rest[0]}.")
            return

        if name == "/clear-images":
            with self._lock:
                c.clear_attachments()
            ui.log("Staged images cleared.", level="images")
            return

        if name == "/expand":
            if len(rest) != 1 or not rest[0].isdigit():
                ui.warn("Usage: /expand SEQ")
                return
            seq = int(rest[0])
            with self._lock:
                view = c.view
                match = next((e for e in view.entries if e.sequence_id == seq), None)
                expanded = c.toggle_expanded(seq) if match is not None else False
            if match is None:
                ui.warn(f"No entry with sequence id {seq}.")
            elif expanded:
                ui.emit(UIEvent(UIEventKind.ENTRY_DETAIL, {"entry": match, "show_cache": view.show_cache}))
            return

        if name == "/metrics":
            with self._lock:
                view = c.view
            ui.emit(UIEvent(UIEventKind.METRICS, {"metrics": view.metrics, "show_cache": view.show_cache, "force": True}))
            return

        if name == "/new":
            text = raw.strip()[len("/new") :].strip()
            with self._lock:
                cmd = c.new_task(text, c.staged_attachments)
            if cmd is None:
                ui.warn("Usage: /new TEXT")
                return
            ui.emit(UIEvent(UIEventKind.LOG, {"level": "task", "message": "New task requested."}))
            return

        if name == "/clear":
            with self._lock:
                c.clear_task()
            ui.emit(UIEvent(UIEventKind.LOG, {"level": "task", "message": "Clear requested."}))
            return

        ui.warn(f"Unknown command {name}; try /help.")

    def _write_failed(self, e: OSError) -> None:
        logger.error("%s: %s", ErrorCode.RESPONSE_WRITE_FAILED.value, e)
        self._ui.emit(
            UIEvent(
                UIEventKind.ERROR_RAISED,
                {"code": ErrorCode.RESPONSE_WRITE_FAILED.value, "message": str(e)},
            )
        )


def _run_chat(
    *,
    cfg: ViewerConfig,
    event_store: FileEventLogStore,
    response_store: FileResponseStore,
    history_path: Path | None,
) -> int:
    enable_color = cfg.color if cfg.color is not None else _is_tty()
    ui = ConsoleUI(stream=sys.stdout, enable_color=enable_color)
    session = _ChatSession(cfg=cfg, event_store=event_store, response_store=response_store, ui=ui)

    # Input: prompt_toolkit if appropriate; otherwise basic input().
    prompt_session = None
    if _should_use_prompt_toolkit(cfg):
        from prompt_toolkit import PromptSession
        from prompt_toolkit.completion import WordCompleter
        from prompt_toolkit.history import FileHistory, InMemoryHistory
        from prompt_toolkit.key_binding import KeyBindings
        from prompt_toolkit.keys import Keys

        kb = KeyBindings()

        @kb.add(Keys.ControlJ)
        def _(event) -> None:
            event.current_buffer.insert_text("\n")

        @kb.add(Keys.Enter)
        def _(event) -> None:
            event.current_buffer.validate_and_handle()

        history = InMemoryHistory()
        if history_path is not None:
            history_path.parent.mkdir(parents=True, exist_ok=True)
            history = FileHistory(str(history_path))
        commands = [h.split()[0] for h in _HELP_LINES] + ["/yes", "/no", "/help", "/quit"]
        prompt_session = PromptSession(
            message="You> ",
            multiline=True,
            key_bindings=kb,
            completer=WordCompleter(commands, sentence=True),
            history=history,
            placeholder=session.placeholder_text,
            bottom_toolbar=session.toolbar_text,
            refresh_interval=0.5,
        )

    def _prompt() -> str:
        if prompt_session is not None:
            return prompt_session.prompt()
        return input("You> ")

    ui.start()
    ui.print_header(events_path=str(event_store.path), model_id=cfg.model_id)
    session.poll_once()
    session.start_polling()

    try:
        while True:
            try:
                user_text = _prompt()
            except (EOFError, KeyboardInterrupt):
                break

            user_text = _sanitize_text(user_text).strip("\n")
            if not user_text.strip():
                continue
            if user_text.strip().startswith("/"):
                if not session.handle_slash(user_text.strip()):
                    break
                continue
            session.submit(user_text)
    finally:
        session.stop_polling()
        ui.stop()
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    _configure_text_io()
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        func = getattr(args, "func")
        return int(func(args))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
