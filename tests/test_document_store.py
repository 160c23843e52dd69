import base64
import tempfile
import unittest

from mess_exchange.common.errors import ConflictError, NotFoundError, ParseError
from mess_exchange.core.config import DocumentConfig
from mess_exchange.documents.codec import serialize_document, serialize_flat_document
from mess_exchange.documents.convert import events_to_document
from mess_exchange.documents.store import DocumentStore, flat_key, thread_dir
from mess_exchange.storage.base import PrefixedStorage
from mess_exchange.storage.filesystem import FilesystemStorage
from mess_exchange.storage.memory import MemoryStorage

from support import EXCHANGE, REF, created, lifecycle, message, status, ts


def keys_under(storage, prefix):
    return storage.list(prefix)


class TestDocumentStore(unittest.TestCase):
    def setUp(self):
        self.storage = MemoryStorage()
        self.store = DocumentStore(self.storage)

    def test_created_thread_lands_in_received(self):
        self.store.apply(created())
        self.assertEqual(keys_under(self.storage, thread_dir(EXCHANGE, "received", REF)),
                         [f"exchange=home/state=received/{REF}/000-{REF}.messe-af.yaml"])
        self.assertEqual(self.store.find(EXCHANGE, REF).partition, "received")

    def test_relocation_follows_status(self):
        self.store.apply(created())
        self.store.apply(status("claimed", ts(1), executor="laptop"))
        self.assertEqual(self.store.find(EXCHANGE, REF).partition, "executing")
        self.assertEqual(keys_under(self.storage, "exchange=home/state=received/"), [])

        self.store.apply(status("completed", ts(2)))
        self.assertEqual(self.store.find(EXCHANGE, REF).partition, "finished")
        self.assertEqual(keys_under(self.storage, "exchange=home/state=executing/"), [])

    def test_write_happens_before_delete(self):
        calls = []
        storage = self.storage

        class Recording(MemoryStorage):
            def put(self, key, data):
                calls.append(("put", key))
                storage.put(key, data)

            def get(self, key):
                return storage.get(key)

            def list(self, prefix):
                return storage.list(prefix)

            def delete(self, key):
                calls.append(("delete", key))
                storage.delete(key)

        store = DocumentStore(Recording())
        store.apply(created())
        calls.clear()
        store.apply(status("claimed", ts(1), executor="laptop"))

        puts = [i for i, (op, key) in enumerate(calls) if op == "put" and "state=executing" in key]
        deletes = [i for i, (op, key) in enumerate(calls) if op == "delete" and "state=received" in key]
        self.assertTrue(puts and deletes)
        self.assertLess(max(puts), min(deletes))

    def test_interrupted_relocation_keeps_newest_copy(self):
        self.store.apply(created())
        stale = self.storage.get(f"exchange=home/state=received/{REF}/000-{REF}.messe-af.yaml")
        self.store.apply(status("claimed", ts(1), executor="laptop"))
        # simulate a crash between write and delete
        self.storage.put(f"exchange=home/state=received/{REF}/000-{REF}.messe-af.yaml", stale)

        self.assertEqual(self.store.find(EXCHANGE, REF).envelope.status, "claimed")
        self.assertEqual(len(list(self.store.list_views(EXCHANGE))), 1)

    def test_view_matches_event_fold(self):
        for event in lifecycle():
            self.store.apply(event)
        view = self.store.view(EXCHANGE, REF)
        self.assertEqual(view.status, "completed")
        self.assertEqual(view.executor_id, "laptop")
        self.assertEqual(len(view.messages), 2)

    def test_duplicate_creation_is_rejected(self):
        self.store.apply(created())
        with self.assertRaises(ConflictError):
            self.store.apply(created(event_id="again"))

    def test_orphan_and_threadless_events_go_to_the_log(self):
        self.store.apply(message([{"response": {}}], ts(1), ref="2026-10-19-NONE"))
        self.assertEqual(len(self.store.events.list_for_thread(EXCHANGE, "2026-10-19-NONE")), 1)
        self.assertIsNone(self.store.find(EXCHANGE, "2026-10-19-NONE"))

    def test_corrupt_thread_is_skipped_in_listing_only(self):
        self.store.apply(created())
        self.store.apply(created(ref="2026-10-19-GOOD", event_id="g"))
        self.storage.put(f"exchange=home/state=received/{REF}/000-{REF}.messe-af.yaml", b"ref: [oops\n")

        refs = [v.ref for v in self.store.list_views(EXCHANGE)]
        self.assertEqual(refs, ["2026-10-19-GOOD"])
        with self.assertRaises(ParseError):
            self.store.view(EXCHANGE, REF)

    def test_list_views_by_status(self):
        self.store.apply(created())
        self.store.apply(created(ref="2026-10-19-GOOD", event_id="g"))
        self.store.apply(status("claimed", ts(1), executor="laptop"))
        self.assertEqual([v.ref for v in self.store.list_views(EXCHANGE, "claimed")], [REF])
        self.assertEqual([v.ref for v in self.store.list_views(EXCHANGE, "pending")], ["2026-10-19-GOOD"])

    def test_attachments_go_to_blob_storage(self):
        blobs = PrefixedStorage(self.storage, "blobs/")
        store = DocumentStore(self.storage, blobs=blobs, config=DocumentConfig(max_inline_size=1024))
        store.apply(created())
        data_url = "data:image/png;base64," + base64.b64encode(b"p" * 4096).decode("ascii")
        store.apply(message([{"response": {"content": [{"image": data_url}]}}], ts(1)))

        prefix = thread_dir(EXCHANGE, "received", REF)
        self.assertEqual(self.storage.list(f"blobs/{prefix}att-"), [f"blobs/{prefix}att-001-image-image.png"])
        self.assertFalse(any("att-" in k for k in self.storage.list(prefix)))

        store.apply(status("claimed", ts(2), executor="laptop"))
        moved = thread_dir(EXCHANGE, "executing", REF)
        self.assertEqual(blobs.list(moved), [f"{moved}att-001-image-image.png"])
        self.assertEqual(blobs.list(prefix), [])
        self.assertEqual(store.find(EXCHANGE, REF).attachments[0].content, b"p" * 4096)


class TestDocumentLayouts(unittest.TestCase):
    def test_flat_layout(self):
        storage = MemoryStorage()
        store = DocumentStore(storage, config=DocumentConfig(layout="flat"))
        store.apply(created())
        self.assertIsNotNone(storage.get(flat_key(EXCHANGE, "received", REF)))
        store.apply(status("claimed", ts(1), executor="laptop"))
        self.assertIsNone(storage.get(flat_key(EXCHANGE, "received", REF)))
        thread = store.find(EXCHANGE, REF)
        self.assertEqual((thread.layout, thread.partition), ("flat", "executing"))

    def test_flat_thread_is_upgraded_to_directory(self):
        storage = MemoryStorage()
        envelope, messages = events_to_document([created()])
        storage.put(flat_key(EXCHANGE, "received", REF), serialize_flat_document(envelope, messages))

        store = DocumentStore(storage)
        store.apply(status("claimed", ts(1), executor="laptop"))
        self.assertEqual(storage.list("exchange=home/state=received/"), [])
        self.assertEqual(store.find(EXCHANGE, REF).layout, "directory")

    def test_import_and_export(self):
        storage = MemoryStorage()
        store = DocumentStore(storage)
        envelope, messages = events_to_document(lifecycle())

        ref, state = store.import_thread(EXCHANGE, serialize_document(envelope, messages))
        self.assertEqual((ref, state), (REF, "completed"))
        self.assertEqual(store.find(EXCHANGE, REF).partition, "finished")

        flat = store.export_thread(EXCHANGE, REF, layout="flat")
        self.assertIn("Door is locked", flat)
        with self.assertRaises(NotFoundError):
            store.export_thread(EXCHANGE, "2026-10-19-NONE")

    def test_filesystem_backend(self):
        with tempfile.TemporaryDirectory(prefix="mess-docs-") as tmp:
            store = DocumentStore(FilesystemStorage(tmp))
            for event in lifecycle():
                store.apply(event)
            self.assertEqual(store.find(EXCHANGE, REF).partition, "finished")
            self.assertEqual([v.status for v in store.list_views(EXCHANGE)], ["completed"])


if __name__ == "__main__":
    unittest.main()
