import time
import unittest
from unittest.mock import patch

from backend.db import InMemoryDbClient
from backend.events import InMemoryRoomEventBus
from backend.worker import main, process_expired
from shared.types import Room, RoomStatus


class WorkerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.bus = InMemoryRoomEventBus()
        self.now = time.time()

    def add_room(self, room_id, expires_at):
        return self.db.create_room(
            Room(
                id=room_id,
                name="Ride",
                owner_id="owner",
                participant_ids=["owner"],
                starting_point="Kurla Station",
                destination="VESIT",
                passenger_limit=3,
                expires_at=expires_at,
            )
        )

    def test_process_expired_marks_and_publishes(self):
        self.add_room("overdue", self.now - 1)
        self.add_room("later", self.now + 900)
        self.add_room("forever", None)
        subscription = self.bus.subscribe("overdue")

        count = process_expired(db=self.db, bus=self.bus, now=self.now)

        self.assertEqual(count, 1)
        self.assertEqual(self.db.get_room("overdue").status, RoomStatus.EXPIRED)
        self.assertEqual(self.db.get_room("later").status, RoomStatus.OPEN)
        self.assertEqual(self.db.get_room("forever").status, RoomStatus.OPEN)
        payload = subscription.get(timeout=0.1)
        self.assertEqual(payload["event"], "expired")
        self.assertEqual(payload["status"], "EXPIRED")

    def test_process_expired_no_rooms(self):
        self.assertEqual(process_expired(db=self.db, bus=self.bus, now=self.now), 0)

    def test_completed_rooms_are_not_expired(self):
        self.add_room("done", self.now - 1)
        self.db.update_room("done", status=RoomStatus.COMPLETED)
        self.assertEqual(process_expired(db=self.db, bus=self.bus, now=self.now), 0)
        self.assertEqual(self.db.get_room("done").status, RoomStatus.COMPLETED)

    @patch("backend.worker.process_expired")
    def test_main_once(self, mock_process):
        with patch("sys.argv", ["worker", "--once"]):
            self.assertEqual(main(), 0)
        mock_process.assert_called_once_with()


if __name__ == "__main__":
    unittest.main()
