from __future__ import annotations

import json
import re
from dataclasses import dataclass

from google import genai

from shelfmark.services.errors import InvalidInput, UpstreamError

MAX_TAGS = 5
DESCRIPTION_LIMIT = 200

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_BARE_JSON_RE = re.compile(r"\{[\s\S]*\}")

PROMPT_TEMPLATE = """You are a helpful assistant that generates bookmark metadata.

Given this bookmark:
- URL: {url}
- Title: {title}

Generate the following in JSON format:
1. A concise description (1-2 sentences, max 150 characters) that summarizes what this bookmark is about
2. An array of 3-5 relevant tags (single words or short phrases, lowercase)

Return ONLY a valid JSON object with this exact structure:
{{
  "description": "your description here",
  "tags": ["tag1", "tag2", "tag3"]
}}

Important:
- Description should be informative and concise
- Tags should be relevant, searchable keywords
- Return ONLY the JSON object, no additional text"""


@dataclass
class AiMetadata:
    description: str
    tags: list[str]

    def as_dict(self) -> dict:
        return {"description": self.description, "tags": list(self.tags)}


def _generate_text(prompt: str, api_key: str, model_name: str) -> str:
    client = genai.Client(api_key=api_key)
    response = client.models.generate_content(model=model_name, contents=prompt)
    return response.text or ""


def _extract_json_text(text: str) -> str:
    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        return fenced.group(1)
    bare = _BARE_JSON_RE.search(text)
    if bare:
        return bare.group(0)
    return text.strip()


def clean_tags(raw_tags) -> list[str]:
    tags: list[str] = []
    for tag in raw_tags:
        if not isinstance(tag, str):
            continue
        name = tag.strip().lower()
        if name and name not in tags:
            tags.append(name)
    return tags[:MAX_TAGS]


def parse_ai_response(text: str) -> AiMetadata:
    data = json.loads(_extract_json_text(text or ""))
    if not isinstance(data, dict):
        raise ValueError("Invalid response structure from AI")
    description = data.get("description")
    tags = data.get("tags")
    if not isinstance(description, str) or not description or not isinstance(
        tags, list
    ):
        raise ValueError("Invalid response structure from AI")

    if len(description) > DESCRIPTION_LIMIT:
        description = description[: DESCRIPTION_LIMIT - 3] + "..."
    return AiMetadata(description=description, tags=clean_tags(tags))


def generate_metadata(url, title, api_key: str, model_name: str) -> AiMetadata:
    if not url or not title:
        raise InvalidInput("URL and title are required")
    if not api_key:
        raise UpstreamError("AI API key not configured")

    prompt = PROMPT_TEMPLATE.format(url=url, title=title)
    try:
        return parse_ai_response(_generate_text(prompt, api_key, model_name))
    except Exception as exc:
        raise UpstreamError(
            "Failed to generate metadata with AI",
            details=str(exc) or exc.__class__.__name__,
        ) from exc
