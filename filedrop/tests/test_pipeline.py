import unittest

from filedrop.db import InMemoryRecordStore
from filedrop.errors import (
    CounterUpdateFailed,
    ForbiddenError,
    NotFoundError,
    ObjectDeleteFailed,
    ObjectWriteFailed,
    RecordCreateFailed,
    RecordDeleteFailed,
    ValidationError,
)
from filedrop.pipeline import (
    STAGE_CREATE_RECORD,
    STAGE_DELETE_OBJECT,
    STAGE_DELETE_RECORD,
    STAGE_INCREMENT_COUNTER,
    STAGE_WRITE_OBJECT,
    StagedWritePipeline,
    build_storage_path,
)
from filedrop.storage import InMemoryObjectStore


class FlakyObjectStore(InMemoryObjectStore):
    def __init__(self, fail_write=False, fail_delete=False):
        super().__init__()
        self.fail_write = fail_write
        self.fail_delete = fail_delete
        self.delete_calls = []

    def write(self, path, data, **kwargs):
        if self.fail_write:
            raise IOError("bucket unavailable")
        return super().write(path, data, **kwargs)

    def delete(self, path):
        self.delete_calls.append(path)
        if self.fail_delete:
            raise IOError("bucket unavailable")
        return super().delete(path)


class FlakyRecordStore(InMemoryRecordStore):
    def __init__(self, fail_create=False, fail_delete=False, fail_counter=False):
        super().__init__()
        self.fail_create = fail_create
        self.fail_delete = fail_delete
        self.fail_counter = fail_counter
        self.delete_calls = []

    def create_file_record(self, **kwargs):
        if self.fail_create:
            raise RuntimeError("deadline exceeded")
        return super().create_file_record(**kwargs)

    def delete_file_record(self, file_id):
        self.delete_calls.append(file_id)
        if self.fail_delete:
            raise RuntimeError("deadline exceeded")
        return super().delete_file_record(file_id)

    def increment_upload_count(self, principal_id, delta):
        if self.fail_counter:
            raise RuntimeError("contention")
        return super().increment_upload_count(principal_id, delta)


def _pipeline(objects=None, records=None):
    objects = objects or FlakyObjectStore()
    records = records or FlakyRecordStore()
    records.create_principal("alice", "alice@example.com", "alice")
    records.create_principal("bob", "bob@example.com", "bob")
    return StagedWritePipeline(objects, records), objects, records


def _upload(pipeline, principal_id="alice", name="a.jpg", data=b"x" * 10240):
    return pipeline.run_upload(principal_id, data, name, "image/jpeg", len(data))


class BuildStoragePathTests(unittest.TestCase):
    def test_namespaced_by_principal(self):
        path = build_storage_path("alice", "a.jpg", now=1700000000.0)
        self.assertTrue(path.startswith("uploads/alice/1700000000000_"))
        self.assertTrue(path.endswith("_a.jpg"))

    def test_same_name_same_instant_does_not_collide(self):
        paths = {build_storage_path("alice", "a.jpg", now=1.0) for _ in range(50)}
        self.assertEqual(len(paths), 50)

    def test_unsafe_names_are_sanitized(self):
        path = build_storage_path("alice", "../../etc/passwd", now=1.0)
        self.assertTrue(path.startswith("uploads/alice/"))
        self.assertNotIn("..", path)
        self.assertTrue(build_storage_path("alice", "???", now=1.0).endswith("_file"))


class UploadPipelineTests(unittest.TestCase):
    def test_successful_upload_commits_all_stages(self):
        pipeline, objects, records = _pipeline()
        result = _upload(pipeline)

        self.assertEqual(
            result.committed_stages,
            [STAGE_WRITE_OBJECT, STAGE_CREATE_RECORD, STAGE_INCREMENT_COUNTER],
        )
        self.assertEqual(result.warnings, [])
        self.assertEqual(result.size_bytes, 10240)
        self.assertEqual(result.content_type, "image/jpeg")
        self.assertTrue(objects.exists(result.storage_path))
        record = records.get_file_record(result.file_record_id)
        self.assertEqual(record.storage_path, result.storage_path)
        self.assertEqual(record.owner_principal_id, "alice")
        self.assertEqual(records.get_principal("alice").upload_count, 1)
        self.assertEqual(objects.metadata[result.storage_path]["originalName"], "a.jpg")

    def test_same_name_twice_creates_distinct_records(self):
        pipeline, objects, records = _pipeline()
        first = _upload(pipeline)
        second = _upload(pipeline)

        self.assertNotEqual(first.file_record_id, second.file_record_id)
        self.assertNotEqual(first.storage_path, second.storage_path)
        self.assertEqual(len(objects.objects), 2)
        self.assertEqual(records.get_principal("alice").upload_count, 2)

    def test_paths_unique_across_principals(self):
        pipeline, _, _ = _pipeline()
        paths = [_upload(pipeline, "alice").storage_path for _ in range(3)]
        paths += [_upload(pipeline, "bob").storage_path for _ in range(3)]
        self.assertEqual(len(set(paths)), 6)

    def test_upload_then_list_shows_new_record_first_once(self):
        pipeline, _, records = _pipeline()
        older = _upload(pipeline, name="old.txt")
        newer = _upload(pipeline, name="new.txt")

        listed = [r.id for r in records.list_file_records("alice")]
        self.assertEqual(listed, [newer.file_record_id, older.file_record_id])

    def test_object_write_failure_leaves_no_state(self):
        objects = FlakyObjectStore(fail_write=True)
        pipeline, objects, records = _pipeline(objects=objects)

        with self.assertRaises(ObjectWriteFailed):
            _upload(pipeline)
        self.assertEqual(records.files, {})
        self.assertEqual(objects.objects, {})
        self.assertEqual(records.get_principal("alice").upload_count, 0)

    def test_record_failure_removes_orphaned_object(self):
        records = FlakyRecordStore(fail_create=True)
        pipeline, objects, records = _pipeline(records=records)

        with self.assertRaises(RecordCreateFailed) as ctx:
            _upload(pipeline)
        self.assertIsNone(ctx.exception.orphaned_object_path)
        self.assertEqual(objects.objects, {})
        self.assertEqual(len(objects.delete_calls), 1)
        self.assertEqual(records.get_principal("alice").upload_count, 0)

    def test_record_failure_reports_orphan_when_cleanup_fails(self):
        objects = FlakyObjectStore(fail_delete=True)
        records = FlakyRecordStore(fail_create=True)
        pipeline, objects, records = _pipeline(objects=objects, records=records)

        with self.assertRaises(RecordCreateFailed) as ctx:
            _upload(pipeline)
        orphan = ctx.exception.orphaned_object_path
        self.assertIsNotNone(orphan)
        self.assertIn(orphan, objects.objects)
        self.assertEqual(ctx.exception.to_payload()["orphanedObjectPath"], orphan)
        self.assertEqual(records.files, {})

    def test_counter_failure_still_succeeds(self):
        records = FlakyRecordStore(fail_counter=True)
        pipeline, objects, records = _pipeline(records=records)

        result = _upload(pipeline)
        self.assertEqual(result.committed_stages, [STAGE_WRITE_OBJECT, STAGE_CREATE_RECORD])
        self.assertEqual(len(result.warnings), 1)
        self.assertIsInstance(result.warnings[0], CounterUpdateFailed)
        self.assertIsNotNone(records.get_file_record(result.file_record_id))
        self.assertTrue(objects.exists(result.storage_path))
        self.assertEqual(records.get_principal("alice").upload_count, 0)

    def test_missing_principal_counter_is_advisory(self):
        pipeline, _, records = _pipeline()
        result = _upload(pipeline, principal_id="ghost")
        self.assertEqual(len(result.warnings), 1)
        self.assertIsNotNone(records.get_file_record(result.file_record_id))

    def test_rejects_missing_file_name(self):
        pipeline, objects, _ = _pipeline()
        with self.assertRaises(ValidationError):
            pipeline.run_upload("alice", b"data", "", "text/plain", 4)
        self.assertEqual(objects.objects, {})


class DeletePipelineTests(unittest.TestCase):
    def test_delete_removes_object_record_and_count(self):
        pipeline, objects, records = _pipeline()
        uploaded = _upload(pipeline)

        result = pipeline.run_delete("alice", uploaded.file_record_id)
        self.assertEqual(len(result.committed_stages), 3)
        self.assertFalse(objects.exists(uploaded.storage_path))
        self.assertIsNone(records.get_file_record(uploaded.file_record_id))
        self.assertEqual(records.get_principal("alice").upload_count, 0)

    def test_missing_record_is_not_found(self):
        pipeline, _, _ = _pipeline()
        with self.assertRaises(NotFoundError):
            pipeline.run_delete("alice", "nope")

    def test_delete_by_non_owner_is_forbidden_without_mutation(self):
        pipeline, objects, records = _pipeline()
        uploaded = _upload(pipeline, principal_id="bob")

        with self.assertRaises(ForbiddenError):
            pipeline.run_delete("alice", uploaded.file_record_id)
        self.assertTrue(objects.exists(uploaded.storage_path))
        self.assertEqual(objects.delete_calls, [])
        self.assertIsNotNone(records.get_file_record(uploaded.file_record_id))
        self.assertEqual(records.get_principal("bob").upload_count, 1)
        self.assertEqual(records.get_principal("alice").upload_count, 0)

    def test_object_delete_failure_never_touches_record(self):
        objects = FlakyObjectStore()
        records = FlakyRecordStore()
        pipeline, objects, records = _pipeline(objects=objects, records=records)
        uploaded = _upload(pipeline)
        objects.fail_delete = True

        with self.assertRaises(ObjectDeleteFailed):
            pipeline.run_delete("alice", uploaded.file_record_id)
        self.assertEqual(records.delete_calls, [])
        self.assertIsNotNone(records.get_file_record(uploaded.file_record_id))
        self.assertEqual(records.get_principal("alice").upload_count, 1)

    def test_record_delete_failure_reports_dangling_record(self):
        records = FlakyRecordStore()
        pipeline, objects, records = _pipeline(records=records)
        uploaded = _upload(pipeline)
        records.fail_delete = True

        with self.assertRaises(RecordDeleteFailed) as ctx:
            pipeline.run_delete("alice", uploaded.file_record_id)
        self.assertEqual(ctx.exception.dangling_record_id, uploaded.file_record_id)
        self.assertFalse(objects.exists(uploaded.storage_path))
        self.assertEqual(records.get_principal("alice").upload_count, 1)

    def test_counter_failure_on_delete_is_not_escalated(self):
        records = FlakyRecordStore()
        pipeline, _, records = _pipeline(records=records)
        uploaded = _upload(pipeline)
        records.fail_counter = True

        result = pipeline.run_delete("alice", uploaded.file_record_id)
        self.assertEqual(result.committed_stages, [STAGE_DELETE_OBJECT, STAGE_DELETE_RECORD])
        self.assertIsInstance(result.warnings[0], CounterUpdateFailed)
        self.assertIsNone(records.get_file_record(uploaded.file_record_id))

    def test_delete_after_failed_upload_count_stays_at_zero(self):
        records = FlakyRecordStore(fail_counter=True)
        pipeline, _, records = _pipeline(records=records)
        uploaded = _upload(pipeline)
        self.assertEqual(records.get_principal("alice").upload_count, 0)
        records.fail_counter = False

        result = pipeline.run_delete("alice", uploaded.file_record_id)
        self.assertEqual(result.warnings, [])
        self.assertEqual(records.get_principal("alice").upload_count, 0)

    def test_already_missing_object_still_deletes_record(self):
        pipeline, objects, records = _pipeline()
        uploaded = _upload(pipeline)
        objects.objects.pop(uploaded.storage_path)

        result = pipeline.run_delete("alice", uploaded.file_record_id)
        self.assertFalse(result.object_was_present)
        self.assertIsNone(records.get_file_record(uploaded.file_record_id))


if __name__ == "__main__":
    unittest.main()
