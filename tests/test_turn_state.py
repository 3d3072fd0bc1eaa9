import unittest

from agentdeck.runtime.protocol import AgentEvent, NoticeKind, RequestKind, Response
from agentdeck.runtime.turn_state import (
    IDLE,
    PLACEHOLDER_MESSAGE,
    PLACEHOLDER_STDIN,
    InputTarget,
    derive_state,
    derive_transition,
    primary_response,
    secondary_response,
)


def task() -> AgentEvent:
    return AgentEvent.notice(1, NoticeKind.TEXT, "task")


class TestTurnStateTable(unittest.TestCase):
    def test_affordances_per_request(self) -> None:
        cases = [
            (RequestKind.FOLLOW_UP, None, None, InputTarget.NEW_MESSAGE),
            (RequestKind.TOOL_USE, "Approve", "Reject", InputTarget.NEW_MESSAGE),
            (RequestKind.RUN_COMMAND, "Run Command", "Reject", InputTarget.NEW_MESSAGE),
            (RequestKind.COMMAND_OUTPUT, "Exit Command", None, InputTarget.COMMAND_STDIN),
            (RequestKind.TASK_COMPLETE, "Continue", None, InputTarget.NEW_MESSAGE),
        ]
        for kind, primary, secondary, target in cases:
            with self.subTest(kind=kind):
                state = derive_state([task(), AgentEvent.request(2, kind, "x")])
                self.assertTrue(state.input_enabled)
                self.assertEqual(state.source_sequence_id, 2)
                self.assertIs(state.request_kind, kind)
                self.assertEqual(state.primary_label, primary)
                self.assertEqual(state.secondary_label, secondary)
                self.assertIs(state.input_target, target)
                self.assertEqual(state.primary_enabled, primary is not None)
                self.assertEqual(state.secondary_enabled, secondary is not None)

    def test_follow_up_has_no_buttons(self) -> None:
        state = derive_state([task(), AgentEvent.request(2, RequestKind.FOLLOW_UP, "which one?")])
        self.assertFalse(state.buttons_enabled)
        self.assertEqual(state.placeholder, PLACEHOLDER_MESSAGE)

    def test_command_output_pipes_to_stdin(self) -> None:
        state = derive_state(
            [
                task(),
                AgentEvent.request(2, RequestKind.RUN_COMMAND, "python manage.py shell"),
                AgentEvent.notice(3, NoticeKind.COMMAND_OUTPUT, ">>> "),
                AgentEvent.request(4, RequestKind.COMMAND_OUTPUT, ""),
            ]
        )
        self.assertTrue(state.is_piping_to_stdin)
        self.assertEqual(state.placeholder, PLACEHOLDER_STDIN)
        self.assertEqual(state.primary_label, "Exit Command")
        self.assertIsNone(state.secondary_label)

    def test_unrelated_events_leave_state_unchanged(self) -> None:
        events = [
            task(),
            AgentEvent.request(2, RequestKind.TOOL_USE, '{"tool": "readFile"}'),
            AgentEvent.notice(3, NoticeKind.TEXT, "thinking out loud"),
            AgentEvent.request(4, RequestKind.REQUEST_FAILED, "503"),
        ]
        state = derive_state(events)
        self.assertEqual(state.source_sequence_id, 2)
        self.assertIs(state.request_kind, RequestKind.TOOL_USE)

    def test_no_request_is_idle(self) -> None:
        self.assertEqual(derive_state([]), IDLE)
        self.assertEqual(derive_state([task()]), IDLE)
        self.assertTrue(IDLE.input_enabled)
        self.assertFalse(IDLE.buttons_enabled)

    def test_started_after_command_output_request_clears_input(self) -> None:
        events = [
            task(),
            AgentEvent.request(2, RequestKind.COMMAND_OUTPUT, ""),
            AgentEvent.notice(3, NoticeKind.REQUEST_STARTED, "{}"),
        ]
        state = derive_state(events)
        self.assertFalse(state.input_enabled)
        self.assertTrue(state.clears_input)
        self.assertEqual(state.source_sequence_id, 3)
        self.assertFalse(state.primary_enabled)

    def test_started_elsewhere_is_not_a_transition(self) -> None:
        started = AgentEvent.notice(3, NoticeKind.REQUEST_STARTED, "{}")
        self.assertIsNone(derive_transition(started, AgentEvent.notice(2, NoticeKind.TEXT, "hi")))
        self.assertIsNone(derive_transition(started, None))


class TestResponses(unittest.TestCase):
    def test_primary_affirms_where_it_exists(self) -> None:
        for kind in (RequestKind.TOOL_USE, RequestKind.RUN_COMMAND, RequestKind.COMMAND_OUTPUT, RequestKind.TASK_COMPLETE):
            with self.subTest(kind=kind):
                self.assertEqual(primary_response(kind), Response.affirm())
        self.assertIsNone(primary_response(RequestKind.FOLLOW_UP))
        self.assertIsNone(primary_response(None))

    def test_secondary_denies_only_tools_and_commands(self) -> None:
        self.assertEqual(secondary_response(RequestKind.TOOL_USE), Response.deny())
        self.assertEqual(secondary_response(RequestKind.RUN_COMMAND), Response.deny())
        self.assertIsNone(secondary_response(RequestKind.COMMAND_OUTPUT))
        self.assertIsNone(secondary_response(RequestKind.TASK_COMPLETE))


if __name__ == "__main__":
    unittest.main()
