import unittest
from datetime import timedelta

from autoposter.processing.maintenance import cleanup_old_imports, reprocess_failed, reset_import
from autoposter.storage.base import Store
from autoposter.storage.records import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING
from fakes import Clock, FakeStore


class TestMaintenance(unittest.TestCase):
    def setUp(self):
        self.store = FakeStore()
        self.clock = Clock()

    def failed(self, days_ago):
        return self.store.add_import(
            status=STATUS_FAILED,
            retry_count=3,
            error_message="HTTP 500",
            locked_at=self.clock(),
            locked_by="proc_x",
            processed_at=self.clock() - timedelta(days=days_ago),
        )

    def test_reset_clears_bookkeeping(self):
        record = self.failed(1)
        reset_import(self.store, record.id)
        saved = self.store.imports[record.id]
        self.assertEqual(saved.status, STATUS_PENDING)
        self.assertEqual(saved.retry_count, 0)
        self.assertIsNone(saved.error_message)
        self.assertIsNone(saved.locked_at)
        self.assertIsNone(saved.locked_by)

    def test_reprocess_failed_within_window(self):
        recent = self.failed(1)
        old = self.failed(10)
        self.assertEqual(reprocess_failed(self.store, now=self.clock(), days=7), 1)
        self.assertEqual(self.store.imports[recent.id].status, STATUS_PENDING)
        self.assertEqual(self.store.imports[old.id].status, STATUS_FAILED)

        self.assertEqual(reprocess_failed(self.store, now=self.clock()), 1)
        self.assertEqual(self.store.imports[old.id].status, STATUS_PENDING)

    def test_cleanup_deletes_only_old_terminal_records(self):
        old_failed = self.failed(40)
        old_done = self.store.add_import(status=STATUS_COMPLETED, processed_at=self.clock() - timedelta(days=31))
        recent_done = self.store.add_import(status=STATUS_COMPLETED, processed_at=self.clock() - timedelta(days=2))
        pending = self.store.add_import(status=STATUS_PENDING)

        self.assertEqual(cleanup_old_imports(self.store, now=self.clock(), older_than_days=30), 2)
        self.assertNotIn(old_failed.id, self.store.imports)
        self.assertNotIn(old_done.id, self.store.imports)
        self.assertIn(recent_done.id, self.store.imports)
        self.assertIn(pending.id, self.store.imports)

    def test_cleanup_rejects_non_positive_age(self):
        with self.assertRaises(ValueError):
            cleanup_old_imports(self.store, now=self.clock(), older_than_days=0)


class TestStoreInterface(unittest.TestCase):
    def test_incomplete_store_cannot_be_instantiated(self):
        class PingOnlyStore(Store):
            def ping(self):
                return True

        with self.assertRaises(TypeError):
            PingOnlyStore()
        self.assertIsInstance(FakeStore(), Store)


if __name__ == "__main__":
    unittest.main()
