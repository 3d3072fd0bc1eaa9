import json
import tempfile
import unittest
from pathlib import Path

from agentdeck.runtime.event_log import EventLog, EventOrderError
from agentdeck.runtime.protocol import (
    AgentEvent,
    EventKind,
    EventShapeError,
    HostCommand,
    HostCommandKind,
    NoticeKind,
    RequestKind,
    Response,
)
from agentdeck.runtime.stores import FileEventLogStore, FileResponseStore


class TestEventLog(unittest.TestCase):
    def test_rejects_non_increasing_ids(self) -> None:
        log = EventLog(events=[AgentEvent.notice(5, NoticeKind.TEXT, "task")])
        with self.assertRaises(EventOrderError) as ctx:
            log.extend([AgentEvent.notice(6, NoticeKind.TEXT, "ok"), AgentEvent.notice(6, NoticeKind.TEXT, "dup")])
        self.assertEqual(ctx.exception.last_sequence_id, 6)
        self.assertEqual(len(log), 1)

    def test_subscribers_receive_full_snapshots(self) -> None:
        log = EventLog()
        calls: list[tuple] = []
        log.subscribe(calls.append)

        log.extend([AgentEvent.notice(1, NoticeKind.TEXT, "task")])
        log.extend([])
        log.extend([AgentEvent.notice(2, NoticeKind.TEXT, "hi"), AgentEvent.request(3, RequestKind.FOLLOW_UP, "?")])

        self.assertEqual([len(s) for s in calls], [1, 3])
        self.assertEqual(log.last_sequence_id, 3)

    def test_reset_replaces_events_and_notifies(self) -> None:
        log = EventLog(events=[AgentEvent.notice(10, NoticeKind.TEXT, "old task")])
        seen: list[tuple] = []
        log.subscribe(seen.append)
        log.reset([AgentEvent.notice(1, NoticeKind.TEXT, "new task")])
        self.assertEqual([e.sequence_id for e in log.snapshot()], [1])
        self.assertEqual(len(seen), 1)

    def test_reset_with_unordered_events_keeps_old_log(self) -> None:
        log = EventLog(events=[AgentEvent.notice(10, NoticeKind.TEXT, "old task")])
        with self.assertRaises(EventOrderError):
            log.reset([AgentEvent.notice(2, NoticeKind.TEXT, "a"), AgentEvent.notice(1, NoticeKind.TEXT, "b")])
        self.assertEqual(log.last_sequence_id, 10)


class TestFileEventLogStore(unittest.TestCase):
    def _line(self, ev: AgentEvent) -> str:
        return json.dumps(ev.to_dict()) + "\n"

    def test_read_new_consumes_only_complete_lines(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "events.jsonl"
            first = self._line(AgentEvent.notice(1, NoticeKind.TEXT, "task"))
            second = self._line(AgentEvent.request(2, RequestKind.FOLLOW_UP, "?"))
            partial = self._line(AgentEvent.notice(3, NoticeKind.TEXT, "partial"))
            path.write_text(first + second + partial[:10], encoding="utf-8")

            store = FileEventLogStore(path)
            events, offset = store.read_new(0)
            self.assertEqual([e.sequence_id for e in events], [1, 2])
            self.assertEqual(offset, len((first + second).encode("utf-8")))

            with path.open("a", encoding="utf-8") as f:
                f.write(partial[10:])
            events, offset = store.read_new(offset)
            self.assertEqual([e.sequence_id for e in events], [3])

            events, same = store.read_new(offset)
            self.assertEqual((events, same), ([], offset))

    def test_malformed_lines_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "events.jsonl"
            path.write_text(
                "{oops\n"
                + '{"sequence_id": 2, "kind": "request", "notice_kind": "text"}\n'
                + self._line(AgentEvent.notice(3, NoticeKind.TEXT, "fine")),
                encoding="utf-8",
            )
            with self.assertLogs("agentdeck.runtime.stores.fs", level="WARNING"):
                events, _ = FileEventLogStore(path).read_new(0)
            self.assertEqual([e.sequence_id for e in events], [3])

    def test_truncated_file_is_reread(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "events.jsonl"
            path.write_text(self._line(AgentEvent.notice(100, NoticeKind.TEXT, "a long first task")) * 3, encoding="utf-8")
            store = FileEventLogStore(path)
            _, offset = store.read_new(0)
            path.write_text(self._line(AgentEvent.notice(1, NoticeKind.TEXT, "b")), encoding="utf-8")
            with self.assertLogs("agentdeck.runtime.stores.fs", level="WARNING"):
                events, _ = store.read_new(offset)
            self.assertEqual([e.sequence_id for e in events], [1])

    def test_missing_file_reads_empty(self) -> None:
        store = FileEventLogStore(Path("/nonexistent/events.jsonl"))
        self.assertEqual(list(store.read()), [])
        self.assertEqual(store.read_new(0), ([], 0))


class TestFileResponseStore(unittest.TestCase):
    def test_records_responses_and_commands(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = FileResponseStore(Path(tmp) / "nested" / "responses.jsonl")
            store.append_response(Response.message("yes", ["data:image/png;base64,AA"]), in_reply_to=7)
            store.append_response(Response.affirm(), in_reply_to=None)
            store.append_command(HostCommand(kind=HostCommandKind.CLEAR_TASK))
            records = list(store.read())

        self.assertEqual([r["type"] for r in records], ["ask_response", "ask_response", "host_command"])
        self.assertEqual(
            records[0]["response"],
            {"kind": "message", "text": "yes", "attachments": ["data:image/png;base64,AA"]},
        )
        self.assertEqual(records[0]["in_reply_to"], 7)
        self.assertNotIn("in_reply_to", records[1])
        self.assertEqual(records[1]["response"], {"kind": "affirm"})
        self.assertEqual(records[2]["command"], "clear_task")


class TestEventShape(unittest.TestCase):
    def test_request_and_notice_kinds_are_exclusive(self) -> None:
        with self.assertRaises(EventShapeError):
            AgentEvent(sequence_id=1, kind=EventKind.REQUEST, notice_kind=NoticeKind.TEXT)
        with self.assertRaises(EventShapeError):
            AgentEvent.from_dict({"sequence_id": 1, "kind": "notice"})
        with self.assertRaises(EventShapeError):
            AgentEvent.from_dict({"sequence_id": 1, "kind": "notice", "notice_kind": "shout"})
        with self.assertRaises(EventShapeError):
            AgentEvent.from_dict({"kind": "notice", "notice_kind": "text"})

    def test_wire_form(self) -> None:
        ev = AgentEvent.request(4, RequestKind.COMMAND_OUTPUT, "")
        self.assertEqual(ev.to_dict(), {"sequence_id": 4, "kind": "request", "request_kind": "command_output", "text": ""})
        self.assertEqual(AgentEvent.from_dict(ev.to_dict()), ev)
        self.assertEqual(ev.kind_label, "request:command_output")


if __name__ == "__main__":
    unittest.main()
