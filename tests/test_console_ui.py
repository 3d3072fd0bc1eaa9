import io
import unittest

from agentdeck.runtime.folding import ApiCallEntry, ApiUsage, CommandEntry, PassthroughEntry
from agentdeck.runtime.metrics import ApiMetrics
from agentdeck.runtime.protocol import AgentEvent, NoticeKind, RequestKind
from agentdeck.runtime.turn_state import IDLE, awaiting_agent, derive_state
from agentdeck.ui.console_ui import (
    ConsoleUI,
    UIEvent,
    UIEventKind,
    format_affordances,
    format_entry_lines,
    format_task_lines,
)


class TestFormatting(unittest.TestCase):
    def test_long_command_output_collapses(self) -> None:
        entry = CommandEntry(started_at=1, command="seq 10", accumulated_output="".join(f"{i}\n" for i in range(10)))
        collapsed = format_entry_lines(entry)
        self.assertEqual(collapsed[0], "$ seq 10 (running)")
        self.assertEqual(collapsed[1], "  … 2 earlier lines")
        self.assertEqual(collapsed[-1], "  9")
        self.assertEqual(len(format_entry_lines(entry, expanded=True)), 11)

    def test_api_call_status(self) -> None:
        in_flight = ApiCallEntry(started_at=1, request_payload={"request": "Summarize\nthe repo"})
        self.assertEqual(format_entry_lines(in_flight), ["[api] in progress", "  Summarize the repo"])

        done = ApiCallEntry(
            started_at=1,
            usage=ApiUsage(tokens_in=1200, tokens_out=40, cache_reads=10, cost_usd=0.0042),
            retried=True,
            completed=True,
        )
        self.assertEqual(format_entry_lines(done)[0], "[api] ↑1.2k ↓40 | cache +0 →10 | $0.0042 (retried)")
        self.assertEqual(format_entry_lines(done, show_cache=False)[0], "[api] ↑1.2k ↓40 | $0.0042 (retried)")
        self.assertEqual(format_entry_lines(ApiCallEntry(started_at=2, completed=True))[0], "[api] usage unknown")

    def test_passthrough_lines(self) -> None:
        text = PassthroughEntry(AgentEvent.notice(2, NoticeKind.TEXT, "Line one\nLine two", ("data:x",)))
        self.assertEqual(format_entry_lines(text), ["Agent: Line one [1 image]", "       Line two"])
        question = PassthroughEntry(AgentEvent.request(3, RequestKind.FOLLOW_UP, "Which branch?"))
        self.assertEqual(format_entry_lines(question), ["Question: Which branch?"])

    def test_task_header(self) -> None:
        self.assertEqual(format_task_lines(None), ["Task: (none)"])
        task = AgentEvent.notice(1, NoticeKind.TEXT, "Fix login\nand logout", ("a", "b"))
        self.assertEqual(format_task_lines(task), ["Task: Fix login [2 images]", "      and logout"])

    def test_affordances(self) -> None:
        tool = derive_state([AgentEvent.request(2, RequestKind.TOOL_USE, "{}")])
        self.assertEqual(format_affordances(tool), "[Approve] /approve  [Reject] /reject")
        self.assertEqual(format_affordances(IDLE), "")
        self.assertEqual(format_affordances(awaiting_agent(2)), "waiting for agent…")
        stdin = derive_state([AgentEvent.request(2, RequestKind.COMMAND_OUTPUT, "")])
        self.assertEqual(format_affordances(stdin), "[Exit Command] /approve  input goes to command stdin")


class TestConsoleUI(unittest.TestCase):
    def setUp(self) -> None:
        self.out = io.StringIO()
        self.ui = ConsoleUI(stream=self.out, enable_color=False)

    def _entries(self, *entries) -> None:
        self.ui.emit(UIEvent(UIEventKind.ENTRIES, {"entries": entries, "show_cache": True}))
        self.ui.drain()

    def test_command_output_is_appended_not_reprinted(self) -> None:
        self._entries(CommandEntry(started_at=1, command="ls", accumulated_output="a\n"))
        self._entries(CommandEntry(started_at=1, command="ls", accumulated_output="a\nb"))
        self._entries(
            CommandEntry(started_at=1, command="ls", accumulated_output="a\nb"),
            PassthroughEntry(AgentEvent.notice(2, NoticeKind.TEXT, "done")),
        )
        self.assertEqual(self.out.getvalue(), "$ ls\na\nb\nAgent: done\n")

    def test_api_call_prints_wait_then_usage(self) -> None:
        self._entries(ApiCallEntry(started_at=1))
        self._entries(ApiCallEntry(started_at=1, usage=ApiUsage(tokens_in=5, tokens_out=6), completed=True))
        lines = self.out.getvalue().splitlines()
        self.assertEqual(lines, ["[api] in progress", "Waiting for API…", "[api] ↑5 ↓6"])

    def test_metrics_and_turn_state_are_deduplicated(self) -> None:
        for _ in range(2):
            self.ui.emit(UIEvent(UIEventKind.METRICS, {"metrics": ApiMetrics(total_tokens_in=1), "show_cache": False}))
            self.ui.emit(UIEvent(UIEventKind.TURN_STATE, {"turn": awaiting_agent(3)}))
        self.ui.drain()
        self.assertEqual(self.out.getvalue().splitlines(), ["tokens ↑1 ↓0 | cost $0.0000", "waiting for agent…"])

    def test_clear_screen_forgets_rendered_entries(self) -> None:
        entry = PassthroughEntry(AgentEvent.notice(2, NoticeKind.TEXT, "hello"))
        self._entries(entry)
        self.ui.emit(UIEvent(UIEventKind.CLEAR_SCREEN, {}))
        self._entries(entry)
        self.assertEqual(self.out.getvalue().count("Agent: hello"), 2)

    def test_warnings_and_errors(self) -> None:
        self.ui.warn("careful")
        self.ui.emit(UIEvent(UIEventKind.ERROR_RAISED, {"code": "response_write_failed", "message": "disk full"}))
        self.ui.drain()
        self.assertEqual(
            self.out.getvalue().splitlines(),
            ["[warn] careful", "[error] response_write_failed: disk full"],
        )

    def test_render_thread_start_stop(self) -> None:
        self.ui.start()
        self.ui.log("hello", level="info")
        self.ui.stop()
        self.assertIn("[info] hello", self.out.getvalue())


if __name__ == "__main__":
    unittest.main()
