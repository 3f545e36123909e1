import json

import pytest
from google.genai import types

from storyframe import GatewayError, PanelDescription


def image_response(*parts, finish_reason=types.FinishReason.STOP):
    return types.GenerateContentResponse(
        candidates=[types.Candidate(
            content=types.Content(role="model", parts=list(parts)),
            finish_reason=finish_reason,
        )]
    )


def image_part(data: bytes, mime_type: str = "image/png"):
    return types.Part(inline_data=types.Blob(data=data, mime_type=mime_type))


def breakdown_json(count: int) -> str:
    return json.dumps({"panels": [
        {"panel": i, "visual_description": f"scene {i}", "caption": f"line {i}"}
        for i in range(1, count + 1)
    ]})


class FakeGateway:
    """Stands in for GeminiGateway; replies are keyed by prompt template."""

    def __init__(self, moderation="NO", translation=None, story="Once upon a time.",
                 breakdown=None, composite=None):
        self.replies = {
            "moderation": moderation,
            "translation": translation,
            "story": story,
            "breakdown": breakdown if breakdown is not None else breakdown_json(3),
        }
        self.composite = composite if composite is not None else image_response(
            types.Part(text="Here is your page"), image_part(b"PNGDATA"))
        self.text_calls = []
        self.composite_calls = []

    @staticmethod
    def _kind(prompt, response_schema):
        if response_schema is not None:
            return "breakdown"
        if prompt.startswith("Analyze the following text"):
            return "moderation"
        if prompt.startswith("Translate the following text"):
            return "translation"
        return "story"

    def generate_text(self, prompt, *, model=None, max_output_tokens=None,
                      thinking_budget=None, response_schema=None):
        kind = self._kind(prompt, response_schema)
        self.text_calls.append({
            "kind": kind, "prompt": prompt, "max_output_tokens": max_output_tokens,
            "thinking_budget": thinking_budget, "response_schema": response_schema,
        })
        reply = self.replies[kind]
        if isinstance(reply, Exception):
            raise reply
        if reply is None and kind == "translation":
            return prompt.rsplit("TEXT: ", 1)[-1].strip()
        return reply

    def generate_composite(self, prompt, *, model=None, modalities=("IMAGE", "TEXT")):
        self.composite_calls.append(prompt)
        if isinstance(self.composite, Exception):
            raise self.composite
        return self.composite

    def kinds(self):
        return [c["kind"] for c in self.text_calls]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def panels():
    return [PanelDescription(panel=i, visual_description=f"scene {i}", caption=f"line {i}")
            for i in range(1, 4)]


@pytest.fixture
def upstream_error():
    return GatewayError("Model request failed: 503 UNAVAILABLE")
