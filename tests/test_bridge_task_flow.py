import logging
import unittest
from unittest.mock import Mock

logging.disable(logging.CRITICAL)

TICKET_LINK = "🔗 Zendesk Ticket: https://acme.zendesk.com/agent/tickets/42"


def _runtime(taskboard, ticketing):
    from deskbridge.config import EngineConfig
    from deskbridge.services.bridge import BridgeRuntime
    from deskbridge.services.state_store import MemoryStateStore

    return BridgeRuntime(
        config=EngineConfig(),
        cache=MemoryStateStore(),
        durable=MemoryStateStore(),
        taskboard=taskboard,
        ticketing=ticketing,
    )


def _task_payload(event="taskUpdated", status="to do", history=None, description=TICKET_LINK):
    return {
        "event": event,
        "task": {
            "id": "abc",
            "name": "ORD-1",
            "status": {"status": status},
            "description": description,
            "url": "https://app.clickup.com/t/abc",
        },
        "history_items": history or [],
    }


def _notes(ticketing, prefix):
    return [c for c in ticketing.add_internal_note.call_args_list if c[0][2].startswith(prefix)]


class TaskToTicketFlowTests(unittest.TestCase):
    def setUp(self):
        self.taskboard = Mock()
        self.taskboard.get_task.return_value = {}
        self.taskboard.get_comments.return_value = []
        self.ticketing = Mock()
        self.runtime = _runtime(self.taskboard, self.ticketing)

    def _handle(self, payload):
        return self.runtime.new_bridge().handle(payload)

    def test_task_without_link_is_rejected(self):
        result = self._handle(_task_payload(description="no link here"))

        self.assertFalse(result["ok"])
        self.assertEqual(result["side"], "cu->zd")
        self.assertEqual(result["reason"], "no zendesk link")
        self.assertEqual(result["taskId"], "abc")
        self.assertTrue(any(line.startswith("CU_NO_ZD_LINK") for line in result["execution_logs"]))
        self.ticketing.add_internal_note.assert_not_called()

    def test_link_recovered_from_store(self):
        from deskbridge.services.correlation import CorrelationLink

        self.runtime.correlation_store().remember("abc", CorrelationLink(ticket_id="42", subdomain="acme"))

        result = self._handle(_task_payload(event="taskCommentPosted", description=""))

        self.assertTrue(result["ok"])
        self.assertEqual(result["ticketId"], "42")
        self.assertTrue(any(line.startswith("CU_ZD_LINK_RECOVERED") for line in result["execution_logs"]))

    def test_status_change_from_history_updates_ticket(self):
        history = [
            {"id": "h1", "field": "status", "before": "in progress", "after": "complete", "user": {"username": "sam"}}
        ]
        payload = _task_payload(event="taskStatusUpdated", status="complete", history=history)

        result = self._handle(payload)

        self.assertTrue(result["ok"])
        self.assertEqual(result["action"], "status_updated")
        self.assertEqual((result["from"], result["to"]), ("in progress", "complete"))
        self.assertEqual(result["source"], "history")
        self.assertEqual(result["zendesk_status"], "solved")

        note = self.ticketing.add_internal_note.call_args[0]
        self.assertEqual(note[:2], ("acme", "42"))
        self.assertEqual(
            note[2],
            "ClickUp status changed (history)\nFrom: in progress\nTo: complete\n"
            "Updated by: sam\nTask: https://app.clickup.com/t/abc",
        )
        self.ticketing.update_status.assert_called_once_with("acme", "42", "solved")
        self.assertEqual(self.runtime.status_store().last_known("abc"), "COMPLETE")

        # Redelivery of the same history entry changes nothing
        again = self._handle(payload)
        self.assertNotIn("action", again)
        self.ticketing.update_status.assert_called_once()

    def test_note_failure_does_not_block_status_update(self):
        from deskbridge.errors import UpstreamCallFailure

        self.ticketing.add_internal_note.side_effect = UpstreamCallFailure("zendesk", "add internal note", 500)
        history = [{"id": "h1", "field": "status", "before": "to do", "after": "in review"}]

        result = self._handle(_task_payload(event="taskStatusUpdated", status="in review", history=history))

        self.assertFalse(result["ok"])
        self.assertEqual(len(result["errors"]), 1)
        self.assertTrue(result["errors"][0].startswith("note:"))
        self.assertEqual(result["zendesk_status"], "pending")
        self.ticketing.update_status.assert_called_once_with("acme", "42", "pending")

    def test_live_status_diff(self):
        self.runtime.status_store().remember("abc", "to do")

        result = self._handle(_task_payload(event="taskUpdated", status="On Hold"))

        self.assertEqual(result["source"], "live-diff")
        self.assertEqual((result["from"], result["to"]), ("TO DO", "On Hold"))
        self.ticketing.update_status.assert_called_once_with("acme", "42", "hold")

    def test_first_sighting_only_baselines(self):
        result = self._handle(_task_payload(event="taskCommentPosted", status="to do"))

        self.assertEqual(result, {"ok": True, "side": "cu->zd", "event": "taskCommentPosted", "ticketId": "42",
                                  "execution_logs": result["execution_logs"]})
        self.ticketing.update_status.assert_not_called()
        self.assertEqual(self.runtime.status_store().last_known("abc"), "TO DO")

    def test_created_note_posted_once(self):
        payload = _task_payload(event="taskCreated", status="to do")

        self._handle(payload)
        self._handle(payload)

        created = _notes(self.ticketing, "✅ ClickUp task created")
        self.assertEqual(len(created), 1)
        self.assertEqual(
            created[0][0][2],
            "✅ ClickUp task created\nTask #abc — ORD-1\nhttps://app.clickup.com/t/abc\nStatus: to do",
        )

    def test_inline_comment_is_mirrored_once(self):
        history = [
            {
                "id": "c1",
                "field": "comment",
                "comment_text": "Courier will retry ![p](https://img/1)",
                "user": {"username": "ops"},
            }
        ]
        payload = _task_payload(event="taskCommentPosted", history=history)

        result = self._handle(payload)

        self.assertEqual(result["commentId"], "c1")
        self.assertEqual(
            self.ticketing.add_internal_note.call_args[0][2],
            "ClickUp update | ORD-1\nComment added by: ops\nComment: Courier will retry\n"
            "Task: https://app.clickup.com/t/abc\nAttachment URL: https://img/1",
        )
        self.taskboard.get_comments.assert_not_called()

        again = self._handle(payload)
        self.assertNotIn("commentId", again)
        self.assertEqual(len(_notes(self.ticketing, "ClickUp update")), 1)

    def test_comment_fetched_when_not_inline(self):
        self.taskboard.get_comments.return_value = [
            {"id": "77", "comment_text": "Left at door", "user": {"username": "kim"}},
        ]

        result = self._handle(_task_payload(event="taskCommentPosted"))

        self.assertEqual(result["commentId"], "77")
        self.assertIn("Comment added by: kim\nComment: Left at door", self.ticketing.add_internal_note.call_args[0][2])

    def test_inline_and_fetched_copies_of_a_comment_mirror_once(self):
        history = [
            {
                "id": "hist-1",
                "comment_id": "c1",
                "field": "comment",
                "comment_text": "Left at door",
                "user": {"username": "kim"},
            }
        ]
        first = self._handle(_task_payload(event="taskCommentPosted", history=history))
        self.assertEqual(first["commentId"], "c1")

        self.taskboard.get_comments.return_value = [
            {"id": "c1", "comment_text": "Left at door", "user": {"username": "kim"}},
        ]
        second = self._handle(_task_payload(event="taskUpdated"))

        self.assertNotIn("commentId", second)
        self.taskboard.get_comments.assert_called_once_with("abc")
        self.assertEqual(len(_notes(self.ticketing, "ClickUp update")), 1)
        self.assertTrue(any(line.endswith("already mirrored") for line in second["execution_logs"]))

    def test_nested_comment_object_in_history(self):
        history = [
            {
                "id": "hist-2",
                "field": "comment",
                "comment": {"id": "c2", "text_content": "Refund approved"},
                "user": {"username": "ops"},
            }
        ]

        result = self._handle(_task_payload(event="taskCommentPosted", history=history))

        self.assertEqual(result["commentId"], "c2")
        self.assertIn("Comment added by: ops\nComment: Refund approved", self.ticketing.add_internal_note.call_args[0][2])

    def test_engine_comments_are_not_echoed(self):
        history = [{"id": "c9", "field": "comment", "comment_text": "ClickUp task updated\nFrom Zendesk #42"}]

        result = self._handle(_task_payload(event="taskCommentPosted", history=history))

        self.assertTrue(result["ok"])
        self.assertNotIn("commentId", result)
        self.ticketing.add_internal_note.assert_not_called()
        self.taskboard.get_comments.assert_not_called()

    def test_v2_relay_payload(self):
        payload = {
            "trigger_id": "t1",
            "payload": {
                "id": "abc",
                "name": "ORD-1",
                "text_content": TICKET_LINK,
                "status": "to do",
                "history_items": [{"id": "c5", "type": "comment", "text": "Refund issued"}],
            },
        }

        result = self._handle(payload)

        self.assertEqual(result["event"], "taskCommentPosted")
        self.assertEqual(result["commentId"], "c5")


if __name__ == "__main__":
    unittest.main()
