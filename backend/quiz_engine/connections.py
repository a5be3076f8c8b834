from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class Connection:
    quiz_id: str
    participant_id: str
    address: str


class ConnectionRegistry:
    """Maps participants to their current delivery address and back.

    Lives as long as the transport; a reconnect under a new address replaces
    the old mapping in both directions.
    """

    def __init__(self) -> None:
        self._by_participant: Dict[tuple[str, str], Connection] = {}
        self._by_address: Dict[str, Connection] = {}

    def bind(self, quiz_id: str, participant_id: str, address: str) -> None:
        previous = self._by_participant.get((quiz_id, participant_id))
        if previous is not None:
            self._by_address.pop(previous.address, None)
        stale = self._by_address.get(address)
        if stale is not None:
            self._by_participant.pop((stale.quiz_id, stale.participant_id), None)

        connection = Connection(quiz_id=quiz_id, participant_id=participant_id, address=address)
        self._by_participant[(quiz_id, participant_id)] = connection
        self._by_address[address] = connection

    def address_of(self, quiz_id: str, participant_id: str) -> Optional[str]:
        connection = self._by_participant.get((quiz_id, participant_id))
        return connection.address if connection else None

    def lookup(self, address: str) -> Optional[Connection]:
        return self._by_address.get(address)

    def unbind(self, address: str) -> Optional[Connection]:
        connection = self._by_address.pop(address, None)
        if connection is not None:
            self._by_participant.pop((connection.quiz_id, connection.participant_id), None)
        return connection

    def __len__(self) -> int:
        return len(self._by_address)
