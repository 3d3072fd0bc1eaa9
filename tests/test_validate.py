import json
import tempfile
import unittest
from pathlib import Path

from agentdeck.runtime.protocol import AgentEvent, NoticeKind, RequestKind
from agentdeck.runtime.validate import validate_events_file


def _write(path: Path, lines: list[str]) -> Path:
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return path


def _ev(ev: AgentEvent) -> str:
    return json.dumps(ev.to_dict())


class TestValidateEventsFile(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_clean_log_has_no_issues(self) -> None:
        path = _write(
            self.root / "ok.jsonl",
            [
                _ev(AgentEvent.notice(1, NoticeKind.TEXT, "task")),
                _ev(AgentEvent.request(2, RequestKind.RUN_COMMAND, "ls")),
                _ev(AgentEvent.notice(3, NoticeKind.COMMAND_OUTPUT, "a\n")),
                _ev(AgentEvent.notice(4, NoticeKind.REQUEST_STARTED, "{}")),
                _ev(AgentEvent.notice(5, NoticeKind.REQUEST_RETRIED, "{}")),
                _ev(AgentEvent.notice(6, NoticeKind.REQUEST_FINISHED, '{"tokensIn": 1}')),
            ],
        )
        self.assertEqual(validate_events_file(path), [])

    def test_bad_lines_and_order_are_errors(self) -> None:
        path = _write(
            self.root / "bad.jsonl",
            [
                _ev(AgentEvent.notice(1, NoticeKind.TEXT, "task")),
                "{nope",
                '["not", "an", "object"]',
                '{"sequence_id": 2, "kind": "notice"}',
                _ev(AgentEvent.notice(3, NoticeKind.TEXT, "a")),
                _ev(AgentEvent.notice(3, NoticeKind.TEXT, "b")),
            ],
        )
        issues = validate_events_file(path)
        self.assertEqual([i.severity for i in issues], ["error"] * 4)
        self.assertEqual(issues[-1].code, "event_out_of_order")
        self.assertTrue(issues[0].location.endswith(":2"))

    def test_orphans_are_warnings_unless_strict(self) -> None:
        path = _write(
            self.root / "orphans.jsonl",
            [
                _ev(AgentEvent.request(1, RequestKind.FOLLOW_UP, "not a task")),
                _ev(AgentEvent.notice(2, NoticeKind.REQUEST_FINISHED, "{}")),
                _ev(AgentEvent.notice(3, NoticeKind.COMMAND_OUTPUT, "stray")),
            ],
        )
        issues = validate_events_file(path)
        self.assertEqual([i.severity for i in issues], ["warning"] * 3)
        self.assertEqual([i.code for i in issues[1:]], ["unmatched_terminal", "orphan_command_output"])

        strict = validate_events_file(path, strict=True)
        self.assertEqual([i.severity for i in strict], ["error"] * 3)

    def test_malformed_payload_is_a_warning(self) -> None:
        path = _write(
            self.root / "payload.jsonl",
            [
                _ev(AgentEvent.notice(1, NoticeKind.TEXT, "task")),
                _ev(AgentEvent.notice(2, NoticeKind.REQUEST_STARTED, "{broken")),
            ],
        )
        issues = validate_events_file(path, strict=True)
        self.assertEqual([(i.severity, i.code) for i in issues], [("warning", "malformed_payload")])

    def test_missing_file(self) -> None:
        issues = validate_events_file(self.root / "absent.jsonl")
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].severity, "error")
        self.assertIn("not found", issues[0].render())


if __name__ == "__main__":
    unittest.main()
