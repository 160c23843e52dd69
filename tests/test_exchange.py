"""端到端场景：注册执行者、创建请求、认领、完成，分别跑在事件日志与文档两种模式上。"""

import unittest

from mess_exchange.app import create_runtime
from mess_exchange.common.errors import ConflictError, ForbiddenError, NotFoundError, ParseError, ValidationError
from mess_exchange.core.config import ExchangeConfig, StorageConfig
from mess_exchange.events.bus import THREAD_CREATED, THREAD_STATUS_CHANGED


class ScenarioMixin:
    mode = "event-sourced"

    def setUp(self):
        cfg = ExchangeConfig(mode=self.mode, storage=StorageConfig(type="memory"))
        self.rt = create_runtime(cfg)
        self.ex = self.rt.exchange
        self.notices = []
        self.rt.bus.subscribe(THREAD_CREATED, lambda topic, n: self.notices.append((topic, n)))
        self.rt.bus.subscribe(THREAD_STATUS_CHANGED, lambda topic, n: self.notices.append((topic, n)))

    def tearDown(self):
        self.rt.close()

    def login(self, executor_id, exchange="home"):
        token = self.ex.register_executor(exchange, {"executor_id": executor_id})["api_key"]
        identity = self.rt.guard.authenticate(token)
        self.assertIsNotNone(identity)
        return identity

    def test_request_lifecycle(self):
        requestor = self.login("requestor")
        phone = self.login("phone")

        created = self.ex.create_request(requestor, {"intent": "Check the door", "response_hint": ["image"]})
        ref = created["ref"]
        self.assertEqual(created["status"], "pending")
        self.assertEqual(self.ex.partition_of(requestor, ref), "received")

        self.ex.update_request(phone, ref, {"status": "claimed"})
        thread = self.ex.get_thread(phone, ref)["thread"]
        self.assertEqual(thread["executor_id"], "phone")
        self.assertEqual(self.ex.partition_of(phone, ref), "executing")
        before = len(thread["messages"])

        result = self.ex.update_request(
            phone, ref, {"status": "completed", "mess": [{"response": {"content": ["Door is locked"]}}]}
        )
        self.assertEqual(result, {"ref": ref, "status": "completed"})
        thread = self.ex.get_thread(requestor, ref)["thread"]
        self.assertEqual(self.ex.partition_of(requestor, ref), "finished")
        self.assertEqual(len(thread["messages"]), before + 1)
        self.assertEqual(thread["messages"][-1]["from"], "phone")
        self.assertEqual(thread["executor_id"], "phone")
        self.assertEqual(thread["status"], "completed")

        self.assertEqual([t for t, _ in self.notices], [THREAD_CREATED, THREAD_STATUS_CHANGED, THREAD_STATUS_CHANGED])
        self.assertEqual(self.notices[0][1].response_hint, ["image"])

    def test_redundant_status_is_a_no_op(self):
        requestor = self.login("requestor")
        ref = self.ex.create_request(requestor, {"intent": "Feed the cat"})["ref"]
        before = self.ex.get_thread(requestor, ref)["thread"]
        self.ex.update_request(requestor, ref, {"status": "pending"})
        self.assertEqual(self.ex.get_thread(requestor, ref)["thread"], before)
        self.assertEqual(len(self.notices), 1)

    def test_status_only_message_is_not_a_transition(self):
        requestor, phone = self.login("requestor"), self.login("phone")
        ref = self.ex.create_request(requestor, {"intent": "Check the door"})["ref"]
        result = self.ex.update_request(phone, ref, {"mess": [{"status": {"code": "in-progress"}}]})
        self.assertEqual(result["status"], "pending")

        thread = self.ex.get_thread(requestor, ref)["thread"]
        self.assertEqual((thread["status"], thread["executor_id"], len(thread["messages"])), ("pending", None, 2))
        self.assertEqual(thread["messages"][-1]["content"], [{"status": {"code": "in-progress"}}])
        self.assertEqual(self.ex.partition_of(requestor, ref), "received")
        self.assertEqual(len(self.notices), 1)

    def test_later_claim_does_not_steal_executor(self):
        requestor, a, b = self.login("requestor"), self.login("a"), self.login("b")
        ref = self.ex.create_request(requestor, {"intent": "Take out the bins"})["ref"]
        self.ex.update_request(a, ref, {"status": "claimed"})
        self.ex.update_request(a, ref, {"status": "in-progress"})
        self.ex.update_request(b, ref, {"status": "claimed"})
        self.assertEqual(self.ex.get_thread(b, ref)["thread"]["executor_id"], "a")

    def test_executors_share_an_exchange(self):
        a, b = self.login("a"), self.login("b")
        with self.assertRaises(ConflictError):
            self.ex.update_executor(b, "a", {"display_name": "not yours"})
        with self.assertRaises(ForbiddenError):
            self.ex.update_executor(b, "a", {"display_name": "not yours"})
        self.assertEqual(self.ex.update_executor(a, "a", {"display_name": "Laptop"})["executor"]["display_name"],
                         "Laptop")

        ref_a = self.ex.create_request(a, {"intent": "from a"})["ref"]
        ref_b = self.ex.create_request(b, {"intent": "from b", "priority": "urgent"})["ref"]
        for who in (a, b):
            refs = {t["ref"] for t in self.ex.list_threads(who)["threads"]}
            self.assertEqual(refs, {ref_a, ref_b})
        self.assertEqual({e["id"] for e in self.ex.list_executors(a)["executors"]}, {"a", "b"})

    def test_exchanges_are_isolated(self):
        home, office = self.login("phone"), self.login("phone", exchange="office")
        self.ex.create_request(home, {"intent": "home only"})
        self.assertEqual(self.ex.list_threads(office)["threads"], [])

    def test_list_threads_newest_first_and_by_status(self):
        requestor = self.login("requestor")
        first = self.ex.create_request(requestor, {"intent": "one"})["ref"]
        second = self.ex.create_request(requestor, {"intent": "two"})["ref"]
        self.assertEqual([t["ref"] for t in self.ex.list_threads(requestor)["threads"]], [second, first])

        self.ex.update_request(requestor, first, {"status": "cancelled"})
        self.assertEqual([t["ref"] for t in self.ex.list_threads(requestor)["threads"]], [first, second])
        self.assertEqual([t["ref"] for t in self.ex.list_threads(requestor, "pending")["threads"]], [second])
        self.assertNotIn("messages", self.ex.list_threads(requestor)["threads"][0])

    def test_client_id_is_embedded_in_ref(self):
        requestor = self.login("requestor")
        ref = self.ex.create_request(requestor, {"intent": "x", "id": "Front Door #1"})["ref"]
        self.assertTrue(ref.endswith("-front-door-1"), ref)

    def test_validation_happens_before_writes(self):
        requestor = self.login("requestor")
        with self.assertRaises(ValidationError):
            self.ex.create_request(requestor, {"intent": ""})
        with self.assertRaises(ValidationError):
            self.ex.create_request(requestor, {"intent": "x", "priority": "asap"})
        ref = self.ex.create_request(requestor, {"intent": "x"})["ref"]
        with self.assertRaises(ValidationError):
            self.ex.update_request(requestor, ref, {"status": "exploded"})
        with self.assertRaises(ValidationError):
            self.ex.update_request(requestor, ref, {})
        with self.assertRaises(ValidationError):
            self.ex.get_thread(requestor, "../etc/passwd")
        self.assertEqual(self.ex.get_thread(requestor, ref)["thread"]["status"], "pending")

    def test_missing_thread(self):
        requestor = self.login("requestor")
        with self.assertRaises(NotFoundError):
            self.ex.get_thread(requestor, "2026-10-19-NONE")
        with self.assertRaises(NotFoundError):
            self.ex.update_request(requestor, "2026-10-19-NONE", {"status": "claimed"})
        with self.assertRaises(NotFoundError):
            self.ex.partition_of(requestor, "2026-10-19-NONE")

    def test_duplicate_executor(self):
        self.login("phone")
        with self.assertRaises(ConflictError):
            self.ex.register_executor("home", {"executor_id": "phone"})


class TestEventSourcedExchange(ScenarioMixin, unittest.TestCase):
    mode = "event-sourced"

    def test_partition_is_logical(self):
        requestor = self.login("requestor")
        ref = self.ex.create_request(requestor, {"intent": "x"})["ref"]
        self.ex.update_request(requestor, ref, {"status": "failed"})
        self.assertEqual(self.ex.partition_of(requestor, ref), "canceled")
        self.assertFalse(self.rt.storage.list("exchange=home/"))


class TestDocumentExchange(ScenarioMixin, unittest.TestCase):
    mode = "document"

    def test_corrupt_document_is_isolated(self):
        requestor = self.login("requestor")
        good = self.ex.create_request(requestor, {"intent": "good"})["ref"]
        bad = self.ex.create_request(requestor, {"intent": "bad"})["ref"]
        self.rt.storage.put(f"exchange=home/state=received/{bad}/000-{bad}.messe-af.yaml", b"ref: [broken\n")

        self.assertEqual([t["ref"] for t in self.ex.list_threads(requestor)["threads"]], [good])
        with self.assertRaises(ParseError):
            self.ex.get_thread(requestor, bad)

    def test_documents_are_written_per_partition(self):
        requestor = self.login("requestor")
        ref = self.ex.create_request(requestor, {"intent": "x"})["ref"]
        self.assertTrue(self.rt.storage.list(f"exchange=home/state=received/{ref}/"))
        self.ex.update_request(requestor, ref, {"status": "claimed"})
        self.assertFalse(self.rt.storage.list(f"exchange=home/state=received/{ref}/"))
        self.assertTrue(self.rt.storage.list(f"exchange=home/state=executing/{ref}/"))
        # executor registrations are not thread documents
        self.assertTrue(self.rt.storage.list("events/exchange=home/"))


if __name__ == "__main__":
    unittest.main()
