import json
from types import SimpleNamespace

import pytest

from shelfmark.services import ai_metadata
from shelfmark.services.ai_metadata import clean_tags, generate_metadata, parse_ai_response
from shelfmark.services.errors import InvalidInput, UpstreamError


def test_parse_ai_response_reads_fenced_json():
    text = 'Sure!\n```json\n{"description": "A docs site.", "tags": ["Docs", "python"]}\n```'

    result = parse_ai_response(text)

    assert result.description == "A docs site."
    assert result.tags == ["docs", "python"]


def test_parse_ai_response_reads_bare_json_inside_prose():
    text = 'Here you go: {"description": "News", "tags": ["news"]} hope it helps'

    assert parse_ai_response(text).as_dict() == {"description": "News", "tags": ["news"]}


def test_parse_ai_response_truncates_description():
    text = json.dumps({"description": "d" * 600, "tags": ["a"]})

    result = parse_ai_response(text)

    assert len(result.description) == 200
    assert result.description.endswith("...")


@pytest.mark.parametrize(
    "text",
    [
        "no json at all",
        json.dumps({"tags": ["a"]}),
        json.dumps({"description": "ok", "tags": "a,b"}),
        json.dumps({"description": "", "tags": []}),
        json.dumps(["description", "tags"]),
    ],
)
def test_parse_ai_response_rejects_bad_structures(text):
    with pytest.raises(ValueError):
        parse_ai_response(text)


def test_clean_tags_normalizes_and_caps():
    raw = ["  Python ", "python", 3, None, "", "Web", "APIs", "flask", "testing", "extra"]

    assert clean_tags(raw) == ["python", "web", "apis", "flask", "testing"]


def test_generate_metadata_requires_url_title_and_key():
    with pytest.raises(InvalidInput):
        generate_metadata("", "Title", api_key="k", model_name="m")
    with pytest.raises(InvalidInput):
        generate_metadata("https://x.example", None, api_key="k", model_name="m")
    with pytest.raises(UpstreamError) as excinfo:
        generate_metadata("https://x.example", "X", api_key="", model_name="m")
    assert excinfo.value.message == "AI API key not configured"
    assert excinfo.value.status_code == 500


def test_generate_metadata_passes_prompt_to_model(monkeypatch):
    calls = []

    def fake_generate(prompt, api_key, model_name):
        calls.append((prompt, api_key, model_name))
        return '{"description": "Example site", "tags": ["example"]}'

    monkeypatch.setattr(ai_metadata, "_generate_text", fake_generate)

    result = generate_metadata(
        "https://x.example", "X Site", api_key="key", model_name="gemini-test"
    )

    assert result.tags == ["example"]
    prompt, api_key, model_name = calls[0]
    assert "URL: https://x.example" in prompt
    assert "Title: X Site" in prompt
    assert (api_key, model_name) == ("key", "gemini-test")


def test_generate_text_calls_gemini_client(monkeypatch):
    calls = {}

    class FakeModels:
        def generate_content(self, model, contents):
            calls["model"] = model
            calls["contents"] = contents
            return SimpleNamespace(text='{"description": "d", "tags": []}')

    class FakeClient:
        def __init__(self, api_key):
            calls["api_key"] = api_key
            self.models = FakeModels()

    monkeypatch.setattr(ai_metadata.genai, "Client", FakeClient)

    text = ai_metadata._generate_text("prompt", api_key="key", model_name="gemini-test")

    assert text == '{"description": "d", "tags": []}'
    assert calls == {"api_key": "key", "model": "gemini-test", "contents": "prompt"}


def test_generate_metadata_wraps_model_failures(monkeypatch):
    def fake_generate(prompt, api_key, model_name):
        raise RuntimeError("quota exceeded")

    monkeypatch.setattr(ai_metadata, "_generate_text", fake_generate)

    with pytest.raises(UpstreamError) as excinfo:
        generate_metadata("https://x.example", "X", api_key="key", model_name="m")

    assert excinfo.value.message == "Failed to generate metadata with AI"
    assert excinfo.value.details == "quota exceeded"


def test_ai_endpoint_without_key_reports_configuration_error(client):
    response = client.post(
        "/api/v1/ai/metadata", json={"url": "https://x.example", "title": "X"}
    )

    assert response.status_code == 500
    assert response.get_json() == {"error": "AI API key not configured"}


def test_ai_endpoint_requires_url_and_title(client):
    response = client.post("/api/v1/ai/metadata", json={"url": "https://x.example"})

    assert response.status_code == 400
    assert response.get_json() == {"error": "URL and title are required"}


def test_ai_endpoint_returns_generated_metadata(app, client, monkeypatch):
    app.config["GEMINI_API_KEY"] = "test-key"
    monkeypatch.setattr(
        ai_metadata,
        "_generate_text",
        lambda prompt, api_key, model_name: (
            '```json\n{"description": "Guides", "tags": ["Howto", "guides"]}\n```'
        ),
    )

    response = client.post(
        "/api/v1/ai/metadata", json={"url": "https://x.example", "title": "X"}
    )

    assert response.status_code == 200
    assert response.get_json() == {"description": "Guides", "tags": ["howto", "guides"]}


def test_ai_endpoint_reports_failure_details(app, client, monkeypatch):
    app.config["GEMINI_API_KEY"] = "test-key"
    monkeypatch.setattr(
        ai_metadata,
        "_generate_text",
        lambda prompt, api_key, model_name: "I cannot help with that.",
    )

    response = client.post(
        "/api/v1/ai/metadata", json={"url": "https://x.example", "title": "X"}
    )

    assert response.status_code == 500
    payload = response.get_json()
    assert payload["error"] == "Failed to generate metadata with AI"
    assert payload["details"]
