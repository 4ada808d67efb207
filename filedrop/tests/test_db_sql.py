import unittest
import uuid

from filedrop.db import SqlRecordStore


class SqlRecordStoreTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL store logic.
    """

    def setUp(self):
        self.db = SqlRecordStore("sqlite+pysqlite:///:memory:")
        self.db.create_principal("alice", "alice@example.com", "alice")

    def _create_file(self, owner="alice", name="a.jpg", path=None):
        return self.db.create_file_record(
            owner_principal_id=owner,
            display_name=name,
            storage_path=path or f"uploads/{owner}/{uuid.uuid4().hex}_{name}",
            size_bytes=10,
            content_type="image/jpeg",
            public_reference="https://example.test/a.jpg",
        )

    def test_create_and_get_principal(self):
        principal = self.db.get_principal("alice")
        self.assertIsNotNone(principal)
        self.assertEqual(principal.email, "alice@example.com")
        self.assertEqual(principal.upload_count, 0)
        self.assertIsNone(self.db.get_principal("missing"))

    def test_increment_upload_count(self):
        self.db.increment_upload_count("alice", 1)
        self.db.increment_upload_count("alice", 1)
        self.db.increment_upload_count("alice", -1)
        self.assertEqual(self.db.get_principal("alice").upload_count, 1)

    def test_decrement_never_goes_below_zero(self):
        self.db.increment_upload_count("alice", -1)
        self.assertEqual(self.db.get_principal("alice").upload_count, 0)
        self.db.set_upload_count("alice", 1)
        self.db.increment_upload_count("alice", -3)
        self.assertEqual(self.db.get_principal("alice").upload_count, 0)

    def test_increment_unknown_principal_raises(self):
        with self.assertRaises(LookupError):
            self.db.increment_upload_count("ghost", 1)

    def test_set_upload_count(self):
        self.db.set_upload_count("alice", 7)
        self.assertEqual(self.db.get_principal("alice").upload_count, 7)

    def test_file_record_lifecycle(self):
        record = self._create_file()
        fetched = self.db.get_file_record(record.id)
        self.assertEqual(fetched.storage_path, record.storage_path)
        self.assertEqual(fetched.owner_principal_id, "alice")

        self.db.delete_file_record(record.id)
        self.assertIsNone(self.db.get_file_record(record.id))

    def test_list_is_newest_first_and_filtered_by_owner(self):
        first = self._create_file(name="1.jpg")
        second = self._create_file(name="2.jpg")
        self._create_file(owner="bob", name="3.jpg")

        listed = self.db.list_file_records("alice")
        self.assertEqual([r.id for r in listed], [second.id, first.id])

    def test_iter_principals(self):
        self.db.create_principal("bob", "bob@example.com", "bob")
        ids = sorted(p.id for p in self.db.iter_principals())
        self.assertEqual(ids, ["alice", "bob"])


if __name__ == "__main__":
    unittest.main()
