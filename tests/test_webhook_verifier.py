import json

import pytest

from talkbot.services.errors import AuthenticationError, ValidationError
from talkbot.services.webhook_verifier import (
    compute_signature,
    generate_nonce,
    parse_envelope,
    verify_signature,
)

SECRET = "shared-secret"


def _envelope(message="Hello", room="room-1", actor="users/alice", content=None, **extra) -> bytes:
    payload = {
        "type": "Create",
        "actor": {"type": "Person", "id": actor, "name": "Alice"},
        "object": {
            "type": "Note",
            "id": "42",
            "name": "message",
            "content": content if content is not None else json.dumps({"message": message, "parameters": []}),
        },
        "target": {"type": "Collection", "id": room, "name": "Room"},
    }
    payload.update(extra)
    return json.dumps(payload).encode("utf-8")


class TestVerifySignature:
    def test_valid_signature_passes(self):
        body = _envelope()
        nonce = generate_nonce()
        verify_signature(body, compute_signature(nonce, body, SECRET), nonce, SECRET)

    def test_uppercase_hex_is_accepted(self):
        body = _envelope()
        nonce = generate_nonce()
        verify_signature(body, compute_signature(nonce, body, SECRET).upper(), nonce, SECRET)

    def test_tampered_body_rejected(self):
        body = _envelope()
        nonce = generate_nonce()
        signature = compute_signature(nonce, body, SECRET)
        with pytest.raises(AuthenticationError):
            verify_signature(body + b" ", signature, nonce, SECRET)

    def test_wrong_secret_rejected(self):
        body = _envelope()
        nonce = generate_nonce()
        with pytest.raises(AuthenticationError):
            verify_signature(body, compute_signature(nonce, body, "other"), nonce, SECRET)

    def test_missing_headers_rejected(self):
        body = _envelope()
        with pytest.raises(AuthenticationError):
            verify_signature(body, None, "abc", SECRET)
        with pytest.raises(AuthenticationError):
            verify_signature(body, "abc", None, SECRET)

    def test_missing_secret_rejected(self):
        body = _envelope()
        nonce = generate_nonce()
        with pytest.raises(AuthenticationError):
            verify_signature(body, compute_signature(nonce, body, ""), nonce, "")

    def test_nonce_is_64_hex_chars(self):
        nonce = generate_nonce()
        assert len(nonce) == 64
        int(nonce, 16)


class TestParseEnvelope:
    def test_parses_double_encoded_content(self):
        message = parse_envelope(_envelope(message="What is RAG?"))
        assert message.text == "What is RAG?"
        assert message.room_token == "room-1"
        assert message.actor_id == "users/alice"
        assert message.actor_name == "Alice"
        assert message.message_id == 42
        assert message.callback_url is None

    def test_accepts_inline_content_object(self):
        message = parse_envelope(_envelope(content={"message": "Hi"}))
        assert message.text == "Hi"

    def test_callback_url_is_optional(self):
        message = parse_envelope(_envelope(callback_url="http://localhost:3000/bot-reply"))
        assert message.callback_url == "http://localhost:3000/bot-reply"

    def test_invalid_json_body(self):
        with pytest.raises(ValidationError):
            parse_envelope(b"{not json")

    def test_invalid_inner_content(self):
        with pytest.raises(ValidationError):
            parse_envelope(_envelope(content="{broken"))

    def test_missing_actor(self):
        payload = json.loads(_envelope())
        del payload["actor"]
        with pytest.raises(ValidationError):
            parse_envelope(json.dumps(payload).encode())

    def test_empty_message_text(self):
        with pytest.raises(ValidationError):
            parse_envelope(_envelope(message="   "))

    def test_non_numeric_message_id_becomes_zero(self):
        payload = json.loads(_envelope())
        payload["object"]["id"] = "abc"
        assert parse_envelope(json.dumps(payload).encode()).message_id == 0
