from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    """
    Stable error codes used in diagnostics, validation issues and exceptions.

    None of these are fatal to the viewer: the worst outcome of any of them is
    a dropped or unknown-valued entry.
    """

    MALFORMED_PAYLOAD = "malformed_payload"
    UNMATCHED_TERMINAL = "unmatched_terminal"
    ORPHAN_COMMAND_OUTPUT = "orphan_command_output"
    ATTACHMENT_DECODE_FAILED = "attachment_decode_failed"

    EVENT_SHAPE_INVALID = "event_shape_invalid"
    EVENT_OUT_OF_ORDER = "event_out_of_order"
    RESPONSE_WRITE_FAILED = "response_write_failed"

    CONFIG_INVALID = "config_invalid"
