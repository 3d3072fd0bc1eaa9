from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

from ..protocol import AgentEvent, HostCommand, Response


class EventLogStore(ABC):
    @abstractmethod
    def read(self, since_sequence_id: int | None = None) -> Iterator[AgentEvent]: ...

    @abstractmethod
    def read_new(self, offset: int) -> tuple[list[AgentEvent], int]:
        """Events appended after byte `offset`, and the offset to resume from."""


class ResponseStore(ABC):
    @abstractmethod
    def append_response(self, response: Response, *, in_reply_to: int | None) -> None: ...

    @abstractmethod
    def append_command(self, command: HostCommand) -> None: ...

    @abstractmethod
    def read(self) -> Iterator[dict]: ...
