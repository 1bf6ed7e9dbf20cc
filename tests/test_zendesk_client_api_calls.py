import logging
import unittest
from unittest.mock import Mock

logging.disable(logging.CRITICAL)


def _response(status_code=200, data=None, text="", content=b"", headers=None):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = data if data is not None else {}
    resp.text = text
    resp.content = content
    resp.headers = headers or {}
    return resp


def _client(*responses):
    from deskbridge.services.zendesk_client import ZendeskClient

    session = Mock()
    session.request.side_effect = list(responses)
    return ZendeskClient("agent@example.com", "secret", session=session), session


class ZendeskClientTests(unittest.TestCase):
    def test_api_token_basic_auth(self):
        _, session = _client()
        self.assertEqual(session.auth, ("agent@example.com/token", "secret"))

    def test_internal_note_is_private(self):
        client, session = _client(_response())

        client.add_internal_note("acme", "42", "hello")

        args, kwargs = session.request.call_args
        self.assertEqual(args, ("PUT", "https://acme.zendesk.com/api/v2/tickets/42.json"))
        self.assertEqual(kwargs["json"], {"ticket": {"comment": {"public": False, "body": "hello"}}})

    def test_update_status(self):
        client, session = _client(_response())

        client.update_status("acme", "42", "solved")

        self.assertEqual(session.request.call_args[1]["json"], {"ticket": {"status": "solved"}})

    def test_get_internal_comment_resolves_author(self):
        data = {
            "comments": [
                {"id": 1, "public": False, "author_id": 5, "body": "old"},
                {"id": 9001, "public": False, "author_id": 5, "attachments": [{"content_url": "c"}]},
                {"id": 9002, "public": True, "author_id": 6},
            ],
            "users": [{"id": 5, "name": "Ann Lee"}, {"id": 6, "email": "x@example.com"}],
        }
        client, session = _client(_response(data=data))

        comment = client.get_internal_comment("acme", "42", "9001")

        self.assertEqual(comment["id"], 9001)
        self.assertEqual(comment["author_name"], "Ann Lee")
        self.assertEqual(comment["attachments"], [{"content_url": "c"}])
        args, kwargs = session.request.call_args
        self.assertEqual(args[1], "https://acme.zendesk.com/api/v2/tickets/42/comments.json")
        self.assertEqual(kwargs["params"], {"include": "users"})

    def test_public_or_missing_comment_is_none(self):
        data = {"comments": [{"id": 9002, "public": True, "author_id": 6}], "users": []}
        client, _ = _client(_response(data=data), _response(data=data))

        self.assertIsNone(client.get_internal_comment("acme", "42", "9002"))
        self.assertIsNone(client.get_internal_comment("acme", "42", "1"))

    def test_author_falls_back_to_unknown(self):
        data = {"comments": [{"id": 3, "public": False, "author_id": 99}]}
        client, _ = _client(_response(data=data))

        self.assertEqual(client.get_internal_comment("acme", "42", "3")["author_name"], "Unknown")

    def test_download_attachment(self):
        client, _ = _client(_response(content=b"png", headers={"Content-Type": "image/png"}))

        blob = client.download_attachment("https://acme.zendesk.com/attachments/1", "a.png")

        self.assertEqual((blob.content, blob.content_type, blob.file_name), (b"png", "image/png", "a.png"))

    def test_non_json_success_body_raises_upstream_failure(self):
        from deskbridge.errors import UpstreamCallFailure

        resp = _response(status_code=200, text="<html>maintenance</html>")
        resp.json.side_effect = ValueError("Expecting value")
        client, _ = _client(resp)

        with self.assertRaises(UpstreamCallFailure) as ctx:
            client.get_internal_comment("acme", "42", "1")
        self.assertEqual((ctx.exception.service, ctx.exception.status_code), ("zendesk", 200))

    def test_failure_raises_upstream_failure(self):
        from deskbridge.errors import UpstreamCallFailure

        client, _ = _client(_response(status_code=422, text="invalid status"))

        with self.assertRaises(UpstreamCallFailure) as ctx:
            client.update_status("acme", "42", "bogus")
        self.assertEqual((ctx.exception.service, ctx.exception.status_code), ("zendesk", 422))


if __name__ == "__main__":
    unittest.main()
