import logging
import unittest
from unittest.mock import Mock

logging.disable(logging.CRITICAL)


class CleanCommentTextTests(unittest.TestCase):
    def test_markup_is_stripped_and_images_lifted(self):
        from deskbridge.services.comments import clean_comment_text

        raw = "<p>Package arrived</p>damaged<br/>see ![photo](https://cdn.example/p.png) thanks"
        text, urls = clean_comment_text(raw)
        self.assertEqual(text, "Package arrived damaged see thanks")
        self.assertEqual(urls, ["https://cdn.example/p.png"])

    def test_attachment_noise_is_removed(self):
        from deskbridge.services.comments import clean_comment_text

        text, urls = clean_comment_text("see invoice_final.pdf and https://x.example/a%20b now")
        self.assertEqual(text, "see and now")
        self.assertEqual(urls, [])

    def test_none_is_empty(self):
        from deskbridge.services.comments import clean_comment_text

        self.assertEqual(clean_comment_text(None), ("", []))

    def test_dedupe_urls_keeps_first_occurrence(self):
        from deskbridge.services.comments import dedupe_urls

        self.assertEqual(dedupe_urls(["a", None, "b", "a", "", "c", "b"]), ["a", "b", "c"])

    def test_normalize_attachment_shapes(self):
        from deskbridge.services.comments import normalize_attachment

        self.assertEqual(normalize_attachment("https://u"), "https://u")
        self.assertEqual(normalize_attachment({"download_url": "d", "url": "u"}), "d")
        self.assertEqual(normalize_attachment({"file": {"url": "f"}}), "f")
        self.assertEqual(normalize_attachment({"attachment": {"download_url": "a"}}), "a")
        self.assertIsNone(normalize_attachment({"title": "x"}))
        self.assertIsNone(normalize_attachment(None))


class LoopPreventionTests(unittest.TestCase):
    def test_engine_zendesk_notes(self):
        from deskbridge.services.comments import is_engine_zendesk_note

        for body in [
            "✅ ClickUp task created\nTask #abc",
            "ClickUp task updated",
            "ClickUp status changed (history)\nFrom: A",
            "Clickup update | ORD-1",
            "Comment added by: Sam",
            "ℹ️ ClickUp task status: done",
        ]:
            self.assertTrue(is_engine_zendesk_note(body), body)
        self.assertFalse(is_engine_zendesk_note("clickup - ORD-1 - customer called"))

    def test_engine_task_comments(self):
        from deskbridge.services.comments import is_engine_task_comment

        self.assertTrue(is_engine_task_comment("ClickUp task created From Zendesk #42 By: Ann"))
        self.assertTrue(is_engine_task_comment("From Zendesk #42"))
        self.assertTrue(is_engine_task_comment("Attachment (fallback link): a.pdf"))
        self.assertFalse(is_engine_task_comment("Courier says Tuesday"))

    def test_inline_comment_skips_engine_comments(self):
        from deskbridge.services.events import TaskWebhookV1

        history = [
            {"id": "c1", "field": "comment", "comment_text": "customer wants refund", "user": {"username": "ops"}},
            {"id": "c2", "field": "comment", "comment_text": "ClickUp task updated\nFrom Zendesk #42"},
        ]
        event = TaskWebhookV1(event="taskCommentPosted", task={"id": "abc"}, history_items=history).to_event()

        from deskbridge.services.comments import latest_comment_from_event

        latest = latest_comment_from_event(event)
        self.assertEqual(latest.id, "c1")
        self.assertEqual(latest.user_name, "ops")

    def test_inline_comment_collects_task_attachments(self):
        from deskbridge.services.comments import latest_comment_from_event
        from deskbridge.services.events import TaskWebhookV1

        task = {"id": "abc", "attachments": [{"parent_id": "c1", "url": "https://att/1"}, {"parent_id": "zz", "url": "x"}]}
        history = [{"id": "c1", "type": "comment", "text": "look ![i](https://img/2)", "attachments": [{"url": "https://att/1"}]}]
        event = TaskWebhookV1(event="taskCommentPosted", task=task, history_items=history).to_event()

        latest = latest_comment_from_event(event)
        self.assertEqual(latest.text, "look")
        self.assertEqual(latest.attachments, ["https://att/1", "https://img/2"])

    def test_live_fetch_skips_engine_comments(self):
        from deskbridge.services.comments import fetch_latest_human_comment

        taskboard = Mock()
        taskboard.get_task.return_value = {"attachments": [{"parent_id": "2", "url": "https://att/2"}]}
        taskboard.get_comments.return_value = [
            {"id": "3", "comment_text": "ClickUp task updated\nFrom Zendesk #42\nBy: Ann"},
            {"id": "2", "comment_text": "Driver lost the parcel", "user": {"email": "d@example.com"}, "date": "1700"},
            {"id": "1", "comment_text": "older"},
        ]

        latest = fetch_latest_human_comment(taskboard, "abc")
        self.assertEqual(latest.id, "2")
        self.assertEqual(latest.text, "Driver lost the parcel")
        self.assertEqual(latest.user_name, "d@example.com")
        self.assertEqual(latest.attachments, ["https://att/2"])
        self.assertEqual(latest.created, 1700)

    def test_live_fetch_failure_yields_nothing(self):
        from deskbridge.errors import UpstreamCallFailure
        from deskbridge.services.comments import fetch_latest_human_comment

        taskboard = Mock()
        taskboard.get_task.side_effect = UpstreamCallFailure("clickup", "get task", 500)
        taskboard.get_comments.side_effect = UpstreamCallFailure("clickup", "get comments", 500)

        self.assertIsNone(fetch_latest_human_comment(taskboard, "abc"))


class HistoryCommentTests(unittest.TestCase):
    def test_comment_id_wins_over_history_entry_id(self):
        from deskbridge.services.events import comment_entry_id

        self.assertEqual(comment_entry_id({"id": "hist-1", "comment_id": "c1"}), "c1")
        self.assertEqual(comment_entry_id({"id": "hist-1", "comment": {"id": 7}}), "7")
        self.assertEqual(comment_entry_id({"id": "hist-1", "comment": "plain text"}), "hist-1")

    def test_nested_comment_object_supplies_text(self):
        from deskbridge.services.comments import comment_text

        self.assertEqual(comment_text({"comment": {"text_content": "Customer accepted refund"}}), "Customer accepted refund")
        self.assertEqual(comment_text({"comment": {"comment_text": "Resend label"}}), "Resend label")
        self.assertEqual(comment_text({"comment_text": "top level", "comment": {"text_content": "nested"}}), "top level")
        self.assertEqual(comment_text({"comment": {}}), "")

    def test_history_entry_with_nested_comment(self):
        from deskbridge.services.comments import latest_comment_from_event
        from deskbridge.services.events import TaskWebhookV1

        history = [
            {
                "id": "h9",
                "field": "comment",
                "comment": {"id": "c7", "text_content": "Customer accepted refund"},
                "user": {"username": "ops"},
            }
        ]
        event = TaskWebhookV1(event="taskCommentPosted", task={"id": "abc"}, history_items=history).to_event()

        latest = latest_comment_from_event(event)
        self.assertEqual(latest.id, "c7")
        self.assertEqual(latest.text, "Customer accepted refund")


class OrderNoteTests(unittest.TestCase):
    def test_spaced_note_keeps_hyphenated_order(self):
        from deskbridge.services.comments import parse_order_note

        note = parse_order_note("ClickUp - ORD-1234 - Customer reports   damage\nsecond line")
        self.assertEqual(note.order_token, "ORD-1234")
        self.assertEqual(note.note_text, "Customer reports   damage\nsecond line")

    def test_tight_note(self):
        from deskbridge.services.comments import parse_order_note

        note = parse_order_note("clickup-12345-call back")
        self.assertEqual(note.order_token, "12345")
        self.assertEqual(note.note_text, "call back")

    def test_order_token_is_sanitized(self):
        from deskbridge.services.comments import parse_order_note

        self.assertEqual(parse_order_note("clickup - [#A77] - x").order_token, "A77")
        self.assertEqual(parse_order_note("clickup - <b>B12</b> extra - x").order_token, "B12")

    def test_non_matching_notes(self):
        from deskbridge.services.comments import parse_order_note

        self.assertIsNone(parse_order_note("please look at this"))
        self.assertIsNone(parse_order_note("clickup - ORD1"))
        self.assertIsNone(parse_order_note("clickup - [] - text"))
        self.assertIsNone(parse_order_note(None))

    def test_normalize_first_last(self):
        from deskbridge.services.comments import normalize_first_last

        self.assertEqual(normalize_first_last("Ann  Lee Smith"), "Ann Lee")
        self.assertEqual(normalize_first_last("Cher"), "Cher")
        self.assertEqual(normalize_first_last("  "), "Unknown Agent")
        self.assertEqual(normalize_first_last(None), "Unknown Agent")


if __name__ == "__main__":
    unittest.main()
