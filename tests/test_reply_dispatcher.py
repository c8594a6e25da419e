import json
from unittest.mock import MagicMock, Mock, patch

import httpx

from talkbot.services.reply_dispatcher import BOT_NONCE_HEADER, BOT_SIGNATURE_HEADER, ReplyDispatcher
from talkbot.services.webhook_verifier import compute_signature


def _client(mock_client_class, status_code=201):
    mock_client = MagicMock()
    mock_client_class.return_value.__enter__.return_value = mock_client
    response = Mock()
    response.status_code = status_code
    mock_client.post.return_value = response
    return mock_client


class TestReplyDispatcher:
    @patch("talkbot.services.reply_dispatcher.httpx.Client")
    def test_platform_reply_is_signed_over_message(self, mock_client_class, settings):
        mock_client = _client(mock_client_class)

        assert ReplyDispatcher(settings).send("room-1", "Hello!", reply_to=42) is True

        url = mock_client.post.call_args.args[0]
        headers = mock_client.post.call_args.kwargs["headers"]
        body = json.loads(mock_client.post.call_args.kwargs["content"])
        assert url == "https://cloud.test/ocs/v2.php/apps/spreed/api/v1/bot/room-1/message"
        assert headers["OCS-APIRequest"] == "true"
        nonce = headers[BOT_NONCE_HEADER]
        assert len(nonce) == 64
        assert headers[BOT_SIGNATURE_HEADER] == compute_signature(nonce, "Hello!", settings.bot_secret)
        assert body["message"] == "Hello!"
        assert body["replyTo"] == 42
        assert body["referenceId"]

    @patch("talkbot.services.reply_dispatcher.httpx.Client")
    def test_callback_reply_is_signed_over_body(self, mock_client_class, settings):
        mock_client = _client(mock_client_class, status_code=200)

        assert ReplyDispatcher(settings).send("room-1", "Hi", reply_to=7, callback_url="http://cb.test/reply")

        url = mock_client.post.call_args.args[0]
        headers = mock_client.post.call_args.kwargs["headers"]
        content = mock_client.post.call_args.kwargs["content"]
        assert url == "http://cb.test/reply"
        assert json.loads(content) == {"message": "Hi", "replyTo": 7, "success": True}
        assert headers[BOT_SIGNATURE_HEADER] == compute_signature(headers[BOT_NONCE_HEADER], content, settings.bot_secret)

    @patch("talkbot.services.reply_dispatcher.httpx.Client")
    def test_fresh_nonce_per_reply(self, mock_client_class, settings):
        mock_client = _client(mock_client_class)
        dispatcher = ReplyDispatcher(settings)
        dispatcher.send("room-1", "one")
        dispatcher.send("room-1", "two")

        nonces = [call.kwargs["headers"][BOT_NONCE_HEADER] for call in mock_client.post.call_args_list]
        assert nonces[0] != nonces[1]

    @patch("talkbot.services.reply_dispatcher.httpx.Client")
    def test_non_2xx_is_reported(self, mock_client_class, settings):
        _client(mock_client_class, status_code=401)
        assert ReplyDispatcher(settings).send("room-1", "Hello!") is False

    @patch("talkbot.services.reply_dispatcher.httpx.Client")
    def test_transport_error_is_reported(self, mock_client_class, settings):
        mock_client = _client(mock_client_class)
        mock_client.post.side_effect = httpx.ConnectError("refused")
        assert ReplyDispatcher(settings).send("room-1", "Hello!") is False

    def test_missing_secret_is_reported(self, settings):
        settings.bot_secret = ""
        assert ReplyDispatcher(settings).send("room-1", "Hello!") is False
