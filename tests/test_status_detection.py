import logging
import unittest

logging.disable(logging.CRITICAL)


class StatusDetectionTests(unittest.TestCase):
    def setUp(self):
        from deskbridge.config import EngineConfig
        from deskbridge.services.dedup import DedupLedger
        from deskbridge.services.state_store import MemoryStateStore
        from deskbridge.services.status import StatusChangeDetector, StatusStateStore

        config = EngineConfig(cache_ttl_seconds=60)
        self.durable = MemoryStateStore()
        self.status_state = StatusStateStore(MemoryStateStore(), self.durable, config)
        self.ledger = DedupLedger(MemoryStateStore(), config.cache_ttl_seconds)
        self.detector = StatusChangeDetector(self.status_state, self.ledger, config)

    @staticmethod
    def _event(event_name="taskUpdated", status="", history=None, task_id="abc"):
        from deskbridge.services.events import TaskWebhookV1

        task = {"id": task_id, "status": {"status": status}}
        return TaskWebhookV1(event=event_name, task=task, history_items=history or []).to_event()

    def test_history_transition_is_emitted_once(self):
        from deskbridge.services.events import TransitionSource

        history = [{"id": "h1", "field": "status", "before": "in progress", "after": "ready for qa"}]
        event = self._event(status="ready for qa", history=history)

        change = self.detector.detect(event)
        self.assertEqual(change.source, TransitionSource.HISTORY)
        self.assertEqual(change.from_label, "IN PROGRESS")
        self.assertEqual(change.to_label, "READY FOR QA")
        self.assertEqual(change.readable_to, "ready for qa")

        # Same history entry delivered again
        self.assertIsNone(self.detector.detect(event))
        self.assertTrue(self.ledger.seen("cu:task:abc:status_hist:h1"))

    def test_history_from_falls_back_to_last_known_then_unknown(self):
        history = [{"id": "h1", "field": "status", "after": "done"}]
        change = self.detector.detect(self._event(history=history))
        self.assertEqual(change.from_label, "UNKNOWN")
        self.assertEqual(change.readable_from, "UNKNOWN")

        self.status_state.remember("abc", "in review")
        history = [{"id": "h2", "field": "status", "after": "done"}]
        change = self.detector.detect(self._event(history=history))
        self.assertEqual(change.from_label, "IN REVIEW")

    def test_live_diff_against_last_known(self):
        from deskbridge.services.events import TransitionSource

        self.status_state.remember("abc", "to do")
        self.assertIsNone(self.detector.detect(self._event(event_name="taskCommentPosted", status="To_Do")))

        change = self.detector.detect(self._event(event_name="taskCommentPosted", status="In Progress"))
        self.assertEqual(change.source, TransitionSource.LIVE_DIFF)
        self.assertEqual((change.from_label, change.to_label), ("TO DO", "IN PROGRESS"))
        self.assertEqual(change.readable_to, "In Progress")

    def test_no_last_known_and_ambiguous_event_emits_nothing(self):
        self.assertIsNone(self.detector.detect(self._event(event_name="taskCommentPosted", status="in progress")))
        self.assertIsNone(self.detector.detect(self._event(event_name="taskCreated", status="to do")))

    def test_no_last_known_but_status_event_is_inferred(self):
        from deskbridge.services.events import TransitionSource

        change = self.detector.detect(self._event(event_name="taskStatusUpdated", status="in review"))
        self.assertEqual(change.source, TransitionSource.INFERRED)
        self.assertEqual((change.from_label, change.to_label), ("UNKNOWN", "IN REVIEW"))

    def test_no_last_known_but_terminal_status_is_inferred(self):
        change = self.detector.detect(self._event(event_name="taskCommentPosted", status="complete"))
        self.assertIsNotNone(change)
        self.assertEqual(change.to_label, "COMPLETE")

    def test_no_status_at_all(self):
        self.assertIsNone(self.detector.detect(self._event(status="")))
        self.assertIsNone(self.detector.detect(self._event(status="open", task_id="")))


class StatusStateStoreTests(unittest.TestCase):
    def setUp(self):
        from deskbridge.config import EngineConfig
        from deskbridge.services.state_store import MemoryStateStore
        from deskbridge.services.status import StatusStateStore

        self.cache = MemoryStateStore()
        self.durable = MemoryStateStore()
        self.state = StatusStateStore(self.cache, self.durable, EngineConfig())

    def test_remember_stores_normalized_label(self):
        self.state.remember("abc", "in_progress")
        self.assertEqual(self.state.last_known("abc"), "IN PROGRESS")
        self.assertEqual(self.durable.get("cu_status:abc"), "IN PROGRESS")

    def test_durable_value_survives_cache_loss(self):
        self.state.remember("abc", "done")
        self.cache.delete("cu_status:abc")
        self.assertEqual(self.state.last_known("abc"), "DONE")
        self.assertEqual(self.cache.get("cu_status:abc"), "DONE")

    def test_baseline_only_when_unknown(self):
        self.assertTrue(self.state.baseline("abc", "to do"))
        self.assertFalse(self.state.baseline("abc", "complete"))
        self.assertEqual(self.state.last_known("abc"), "TO DO")

    def test_remembering_empty_label_forgets(self):
        self.state.remember("abc", "open")
        self.state.remember("abc", "")
        self.assertEqual(self.state.last_known("abc"), "")


if __name__ == "__main__":
    unittest.main()
