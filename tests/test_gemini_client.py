"""
Tests for utils.gemini_client (no network: the SDK's models API is replaced)
"""
from types import SimpleNamespace

import pytest

from conftest import make_page_image
from utils.gemini_client import GeminiClient, create_client
from utils.oracle import CancelToken, OracleCancelled, OracleError, OracleTimeout, Turn, label_pages


class FakeModels:
    def __init__(self, text="{}", error=None):
        self.text = text
        self.error = error
        self.requests = []

    def generate_content(self, model, contents, config=None):
        self.requests.append(SimpleNamespace(model=model, contents=contents, config=config))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


def client_with(models):
    client = GeminiClient(api_key="test-key")
    client.client = SimpleNamespace(models=models)
    return client


class TestGeminiClient:
    def test_init_when_no_key_then_raises(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="API key required"):
            GeminiClient()

    def test_create_client_when_key_given_then_configured_client(self):
        client = create_client(api_key="test-key")
        assert isinstance(client, GeminiClient)
        assert client.api_key == "test-key"

    def test_infer_when_ok_then_json_request_with_labeled_images(self):
        models = FakeModels(text='{"pages": []}')
        client = client_with(models)
        images = label_pages([make_page_image(), make_page_image()], [3, 4])

        text = client.infer(images, "Find questions")

        assert text == '{"pages": []}'
        request = models.requests[0]
        assert request.config.response_mime_type == "application/json"
        assert request.config.temperature == pytest.approx(0.1)
        [user] = request.contents
        assert user.role == "user"
        texts = [part.text for part in user.parts if part.text]
        assert texts == ["[Page 3]", "[Page 4]", "Find questions"]

    def test_infer_when_history_then_turns_follow_first_message(self):
        models = FakeModels()
        client = client_with(models)

        client.infer([], "Find questions", history=[Turn("model", "{}"), Turn("user", "missing questions: 2")])

        contents = models.requests[0].contents
        assert [c.role for c in contents] == ["user", "model", "user"]
        assert contents[2].parts[0].text == "missing questions: 2"

    def test_infer_when_timeout_error_then_oracle_timeout(self):
        client = client_with(FakeModels(error=RuntimeError("504 Deadline Exceeded")))
        with pytest.raises(OracleTimeout):
            client.infer([], "x")

    def test_infer_when_other_error_then_oracle_error(self):
        client = client_with(FakeModels(error=RuntimeError("429 quota")))
        with pytest.raises(OracleError, match="quota"):
            client.infer([], "x")

    def test_infer_when_empty_response_then_oracle_error(self):
        client = client_with(FakeModels(text=""))
        with pytest.raises(OracleError, match="empty"):
            client.infer([], "x")

    def test_infer_when_cancelled_then_no_request(self):
        models = FakeModels()
        client = client_with(models)
        token = CancelToken()
        token.cancel()

        with pytest.raises(OracleCancelled):
            client.infer([], "x", cancel=token)
        assert models.requests == []
