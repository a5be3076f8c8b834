from __future__ import annotations

from unittest import IsolatedAsyncioTestCase

from .db import InMemoryDatabase
from .events import EventStore


class EventStoreTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:  # noqa: D401 - standard unittest hook
        self.events = EventStore(InMemoryDatabase())

    async def test_sequence_numbers_increase_per_quiz(self):
        self.assertEqual(await self.events.append("QZ1", "participant_joined", participant_id="alice"), 1)
        self.assertEqual(await self.events.append("QZ1", "quiz_started"), 2)
        self.assertEqual(await self.events.append("QZ2", "quiz_started"), 1)

        listed = await self.events.list("QZ1")
        self.assertEqual([e["seq"] for e in listed], [1, 2])
        self.assertEqual(listed[0]["payload"], {"type": "participant_joined", "participant_id": "alice"})

    async def test_list_after_and_limit(self):
        for _ in range(5):
            await self.events.append("QZ1", "score_update")
        self.assertEqual([e["seq"] for e in await self.events.list("QZ1", after=3)], [4, 5])
        self.assertEqual([e["seq"] for e in await self.events.list("QZ1", limit=2)], [1, 2])

    async def test_reset_drops_history_but_keeps_counting(self):
        await self.events.append("QZ1", "quiz_started")
        await self.events.append("QZ1", "quiz_completed")
        await self.events.reset("QZ1")

        listed = await self.events.list("QZ1")
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0]["payload"]["type"], "session_reset")
        self.assertEqual(listed[0]["seq"], 3)

    async def test_discard_forgets_history_and_counter(self):
        await self.events.append("QZ1", "quiz_started")
        await self.events.append("QZ2", "quiz_started")
        await self.events.discard("QZ1")

        self.assertEqual(await self.events.list("QZ1"), [])
        self.assertEqual(await self.events.append("QZ1", "session_reset"), 1)
        self.assertEqual(len(await self.events.list("QZ2")), 1)
