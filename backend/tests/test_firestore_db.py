import unittest
from unittest.mock import MagicMock, patch

from firebase_admin import firestore

from backend.errors import (
    InvalidRoomUpdateError,
    OwnerCannotLeaveError,
    RoomClosedError,
    RoomFullError,
    RoomNotFoundError,
)
from backend.firestore_db import (
    MAX_BATCH_WRITES,
    PREFIX_RANGE_END,
    FirestoreDbClient,
    room_from_document,
    room_to_document,
    user_from_document,
    user_to_document,
)
from shared.types import Room, RoomStatus, UserProfile


class FirestoreDocumentTests(unittest.TestCase):
    def test_room_document_uses_camel_case_and_lowered_search_fields(self):
        room = Room(
            id="r1",
            name="Ride",
            owner_id="owner",
            participant_ids=["owner", "rider"],
            starting_point="Chembur Station",
            destination="VESIT",
            passenger_limit=3,
            status=RoomStatus.COMPLETED,
            created_at=10.0,
            updated_at=11.0,
        )
        document = room_to_document(room)

        self.assertNotIn("id", document)
        self.assertEqual(document["participantIds"], ["owner", "rider"])
        self.assertEqual(document["passengerLimit"], 3)
        self.assertEqual(document["startingPointLower"], "chembur station")
        self.assertEqual(document["destinationLower"], "vesit")
        self.assertEqual(document["status"], "COMPLETED")

        restored = room_from_document("r1", document)
        self.assertEqual(restored, room)

    def test_room_from_sparse_document(self):
        room = room_from_document(
            "r2", {"ownerId": "o", "passengerLimit": 2, "startingPoint": "Kurla"}
        )
        self.assertEqual(room.status, RoomStatus.OPEN)
        self.assertEqual(room.participant_ids, [])
        self.assertEqual(room.destination, "")

    def test_user_document(self):
        profile = UserProfile(
            id="u1",
            email="asha@ves.ac.in",
            first_name="Asha",
            last_name="Patil",
            email_verified=True,
            created_at=5.0,
        )
        document = user_to_document(profile)
        self.assertEqual(document["firstName"], "Asha")
        self.assertTrue(document["emailVerified"])
        self.assertEqual(user_from_document("u1", document), profile)


class FirestoreDbClientTests(unittest.TestCase):
    def test_get_room_missing(self):
        client = MagicMock()
        snapshot = client.collection.return_value.document.return_value.get.return_value
        snapshot.exists = False
        db = FirestoreDbClient(client=client)

        self.assertIsNone(db.get_room("missing"))
        client.collection.assert_called_with("sharingRooms")

    def test_get_user(self):
        client = MagicMock()
        snapshot = client.collection.return_value.document.return_value.get.return_value
        snapshot.exists = True
        snapshot.id = "u1"
        snapshot.to_dict.return_value = {"email": "a@ves.ac.in", "firstName": "Asha"}
        db = FirestoreDbClient(client=client)

        user = db.get_user("u1")
        self.assertEqual(user.first_name, "Asha")
        client.collection.assert_called_with("users")


def room_document(**overrides):
    fields = dict(
        id="r1",
        name="Evening ride",
        owner_id="owner",
        owner_name="Asha Patil",
        participant_ids=["owner"],
        starting_point="Chembur Station",
        destination="VESIT",
        passenger_limit=2,
        status=RoomStatus.OPEN,
        created_at=100.0,
        updated_at=100.0,
    )
    fields.update(overrides)
    return room_to_document(Room(**fields))


def snapshot(doc_id, document):
    snap = MagicMock()
    snap.id = doc_id
    snap.exists = document is not None
    snap.to_dict.return_value = document
    return snap


def firestore_client(documents):
    """MagicMock client whose document refs return snapshots of ``documents``."""
    client = MagicMock()
    refs = {}

    def document(doc_id):
        if doc_id not in refs:
            ref = MagicMock()
            ref.get.return_value = snapshot(doc_id, documents.get(doc_id))
            refs[doc_id] = ref
        return refs[doc_id]

    client.collection.return_value.document.side_effect = document
    return client


@patch("backend.firestore_db.firestore.transactional", new=lambda fn: fn)
class FirestoreTransactionTests(unittest.TestCase):
    def test_join_appends_rider(self):
        client = firestore_client({"r1": room_document()})
        db = FirestoreDbClient(client=client)

        room = db.add_participant("r1", "rider", now=150.0)

        self.assertEqual(room.participant_ids, ["owner", "rider"])
        ref = client.collection.return_value.document("r1")
        transaction = client.transaction.return_value
        ref.get.assert_called_with(transaction=transaction)
        transaction.update.assert_called_once_with(
            ref,
            {"participantIds": firestore.ArrayUnion(["rider"]), "updatedAt": 150.0},
        )

    def test_join_full_room(self):
        client = firestore_client(
            {"r1": room_document(participant_ids=["owner", "rider"])}
        )
        db = FirestoreDbClient(client=client)

        with self.assertRaises(RoomFullError):
            db.add_participant("r1", "late", now=150.0)
        client.transaction.return_value.update.assert_not_called()

    def test_join_closed_and_expired_rooms(self):
        client = firestore_client(
            {
                "done": room_document(status=RoomStatus.COMPLETED),
                "late": room_document(expires_at=120.0),
            }
        )
        db = FirestoreDbClient(client=client)

        with self.assertRaises(RoomClosedError):
            db.add_participant("done", "rider", now=150.0)
        with self.assertRaises(RoomClosedError):
            db.add_participant("late", "rider", now=150.0)
        with self.assertRaises(RoomNotFoundError):
            db.add_participant("missing", "rider", now=150.0)
        client.transaction.return_value.update.assert_not_called()

    def test_rejoin_writes_nothing(self):
        client = firestore_client(
            {"r1": room_document(participant_ids=["owner", "rider"])}
        )
        db = FirestoreDbClient(client=client)

        room = db.add_participant("r1", "rider", now=150.0)

        self.assertEqual(room.participant_ids, ["owner", "rider"])
        client.transaction.return_value.update.assert_not_called()

    def test_leave_removes_rider(self):
        client = firestore_client(
            {"r1": room_document(participant_ids=["owner", "rider"])}
        )
        db = FirestoreDbClient(client=client)

        room = db.remove_participant("r1", "rider")

        self.assertEqual(room.participant_ids, ["owner"])
        update = client.transaction.return_value.update.call_args[0][1]
        self.assertEqual(update["participantIds"], firestore.ArrayRemove(["rider"]))

    def test_leave_is_idempotent_and_owner_stays(self):
        client = firestore_client({"r1": room_document()})
        db = FirestoreDbClient(client=client)

        self.assertEqual(db.remove_participant("r1", "stranger").participant_ids, ["owner"])
        with self.assertRaises(OwnerCannotLeaveError):
            db.remove_participant("r1", "owner")
        client.transaction.return_value.update.assert_not_called()

    def test_update_room_checks_limit_inside_transaction(self):
        client = firestore_client(
            {"r1": room_document(passenger_limit=4, participant_ids=["owner", "a", "b"])}
        )
        db = FirestoreDbClient(client=client)
        transaction = client.transaction.return_value

        with self.assertRaises(InvalidRoomUpdateError):
            db.update_room("r1", passenger_limit=2)
        transaction.update.assert_not_called()

        db.update_room("r1", passenger_limit=3, destination="VES College")
        changes = transaction.update.call_args[0][1]
        self.assertEqual(changes["passengerLimit"], 3)
        self.assertEqual(changes["destinationLower"], "ves college")
        self.assertIn("updatedAt", changes)


class FirestoreQueryTests(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.rooms = self.client.collection.return_value
        self.rooms.where.return_value = self.rooms

    def test_list_rooms_prefix_query_and_filters(self):
        self.rooms.stream.return_value = [
            snapshot("old", room_document(created_at=100.0)),
            snapshot("kurla", room_document(destination="Kurla", created_at=110.0)),
            snapshot(
                "full",
                room_document(participant_ids=["owner", "rider"], created_at=120.0),
            ),
            snapshot("gone", room_document(expires_at=130.0, created_at=125.0)),
            snapshot("new", room_document(created_at=140.0)),
        ]
        db = FirestoreDbClient(client=self.client)

        rooms = db.list_rooms(
            starting_prefix=" Chembur ",
            destination_prefix="ves",
            include_full=False,
            unexpired_at=200.0,
            limit=2,
        )

        self.assertEqual([r.id for r in rooms], ["new", "old"])
        filters = [c.kwargs["filter"] for c in self.rooms.where.call_args_list]
        self.assertEqual(
            [(f.field_path, f.op_string) for f in filters],
            [("status", "=="), ("startingPointLower", ">="), ("startingPointLower", "<=")],
        )
        self.assertEqual(filters[1].value, "chembur")
        self.assertEqual(filters[2].value, "chembur" + PREFIX_RANGE_END)

    def test_expire_rooms_commits_in_chunks(self):
        self.rooms.stream.return_value = [
            snapshot(f"r{i}", room_document(expires_at=50.0))
            for i in range(MAX_BATCH_WRITES + 1)
        ]
        batches = []

        def new_batch():
            batches.append(MagicMock())
            return batches[-1]

        self.client.batch.side_effect = new_batch
        db = FirestoreDbClient(client=self.client)

        expired = db.expire_rooms(now=100.0)

        self.assertEqual(len(expired), MAX_BATCH_WRITES + 1)
        self.assertTrue(all(r.status == RoomStatus.EXPIRED for r in expired))
        self.assertEqual(len(batches), 2)
        self.assertEqual(batches[0].update.call_count, MAX_BATCH_WRITES)
        self.assertEqual(batches[1].update.call_count, 1)
        batches[0].commit.assert_called_once()
        batches[1].commit.assert_called_once()

    def test_expire_rooms_without_matches_commits_nothing(self):
        self.rooms.stream.return_value = []
        db = FirestoreDbClient(client=self.client)

        self.assertEqual(db.expire_rooms(now=100.0), [])
        self.client.batch.return_value.commit.assert_not_called()


if __name__ == "__main__":
    unittest.main()
