"""Tests for WebhookRequest."""

from __future__ import annotations

import dataclasses
import io

import pytest

from hookrelay.request import WebhookRequest, normalize_header_name


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("X-Hub-Signature", "X_HUB_SIGNATURE"),
        ("x-hub-signature", "X_HUB_SIGNATURE"),
        ("x_hub_signature", "X_HUB_SIGNATURE"),
        ("HTTP_X_HUB_SIGNATURE", "X_HUB_SIGNATURE"),
        ("Authorization", "AUTHORIZATION"),
        ("Content-Type", "CONTENT_TYPE"),
    ],
)
def test_normalize_header_name(raw, expected):
    assert normalize_header_name(raw) == expected


class TestWebhookRequest:
    def test_headers_normalized(self):
        request = WebhookRequest(headers={"X-Signature": "abc", "HTTP_X_TIMESTAMP": "1"})
        assert dict(request.headers) == {"X_SIGNATURE": "abc", "X_TIMESTAMP": "1"}

    def test_header_lookup_any_convention(self):
        request = WebhookRequest(headers={"x-shopify-hmac-sha256": "sig"})
        assert request.header("X-Shopify-Hmac-Sha256") == "sig"
        assert request["HTTP_X_SHOPIFY_HMAC_SHA256"] == "sig"
        assert request.header("X-Missing") is None

    def test_body_kept_verbatim(self):
        body = b'{"a":1,  "b" : 2}\n'
        request = WebhookRequest(headers={}, body=body)
        assert request.body == body
        assert request.body_size == len(body)

    def test_text_body_encoded(self):
        assert WebhookRequest(body='{"name": "é"}').body == '{"name": "é"}'.encode()

    def test_missing_body_is_empty(self):
        request = WebhookRequest(headers={}, body=None)
        assert request.body == b""
        assert request.body_size == 0

    def test_defaults(self):
        request = WebhookRequest()
        assert request.method == "POST"
        assert request.path == "/"
        assert dict(request.headers) == {}

    def test_method_uppercased(self):
        assert WebhookRequest(method="post").method == "POST"

    def test_immutable(self):
        request = WebhookRequest(headers={"X-A": "1"})
        with pytest.raises(dataclasses.FrozenInstanceError):
            request.body = b"changed"
        with pytest.raises(TypeError):
            request.headers["X_A"] = "2"

    def test_caller_dict_not_shared(self):
        headers = {"X-A": "1"}
        request = WebhookRequest(headers=headers)
        headers["X-A"] = "2"
        assert request.header("X-A") == "1"


class TestFromWsgiEnviron:
    def test_reads_headers_and_body(self):
        body = b'{"event": "test"}'
        environ = {
            "REQUEST_METHOD": "POST",
            "PATH_INFO": "/webhooks/github",
            "CONTENT_TYPE": "application/json",
            "CONTENT_LENGTH": str(len(body)),
            "HTTP_X_HUB_SIGNATURE_256": "sha256=abc",
            "wsgi.input": io.BytesIO(body + b"trailing"),
            "SERVER_NAME": "localhost",
        }
        request = WebhookRequest.from_wsgi_environ(environ)

        assert request.body == body
        assert request.path == "/webhooks/github"
        assert request.header("X-Hub-Signature-256") == "sha256=abc"
        assert request.header("Content-Type") == "application/json"
        assert request.header("SERVER_NAME") is None

    @pytest.mark.parametrize("length", [None, "", "0", "abc"])
    def test_unusable_content_length_reads_nothing(self, length):
        environ = {"wsgi.input": io.BytesIO(b"data")}
        if length is not None:
            environ["CONTENT_LENGTH"] = length
        assert WebhookRequest.from_wsgi_environ(environ).body == b""
