import pytest
import requests

import client as client_module
from client import StoryFrameClient
from conftest import FakeGateway
from server import app
from storyframe import InappropriateContentError, PanelDescription, ProxyError


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self.ok = status_code < 400
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no JSON")
        return self._body


@pytest.fixture
def served(monkeypatch):
    """Route the client's requests.post into the Flask app under test."""
    sent = []

    def _serve(gateway):
        app.config["TESTING"] = True
        app.config["GATEWAY"] = gateway
        test_client = app.test_client()

        def fake_post(url, json=None, timeout=None):
            sent.append(json)
            resp = test_client.post(url.replace("http://proxy", ""), json=json)
            return FakeResponse(resp.status_code, resp.get_json())

        monkeypatch.setattr(client_module.requests, "post", fake_post)
        return StoryFrameClient("http://proxy/")

    _serve.sent = sent
    return _serve


def test_blank_text_never_hits_the_proxy(served):
    c = served(FakeGateway())
    assert c.is_content_inappropriate("  ") is False
    assert c.translate_to_english(" \n") == " \n"
    assert served.sent == []


def test_create_comic_over_http(served):
    c = served(FakeGateway(translation="A fox sneaks into a garden"))
    result = c.create_comic("Un renard", "Vintage")
    assert [p.panel for p in result.panels] == [1, 2, 3]
    assert result.page.data == b"PNGDATA"
    assert [s["action"] for s in served.sent] == [
        "isContentInappropriate", "translateToEnglish",
        "generatePanelBreakdown", "generateComicPage",
    ]
    assert served.sent[-1]["payload"]["style"] == "Vintage"


def test_create_comic_stops_on_inappropriate_story(served):
    c = served(FakeGateway(moderation="YES"))
    with pytest.raises(InappropriateContentError):
        c.create_comic("bad story")
    assert len(served.sent) == 1


def test_write_story_over_http(served):
    c = served(FakeGateway(story="The fox was brave."))
    assert c.write_story("a brave fox") == "The fox was brave."


def test_server_error_message_is_surfaced(served):
    c = served(FakeGateway(breakdown='{"panels": []}'))
    with pytest.raises(ProxyError, match="Could not generate a storyboard"):
        c.generate_panel_breakdown("A fox")


def test_unknown_action_is_surfaced(served):
    c = served(FakeGateway())
    with pytest.raises(ProxyError, match="Invalid action specified"):
        c.call("unknownThing", {})


def test_network_failure(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.exceptions.ConnectionError("connection refused")

    monkeypatch.setattr(client_module.requests, "post", boom)
    with pytest.raises(ProxyError, match="Network request failed: connection refused"):
        StoryFrameClient().generate_story("a fox")


def test_error_without_json_body_uses_default_message(monkeypatch):
    monkeypatch.setattr(client_module.requests, "post",
                        lambda *a, **kw: FakeResponse(502, None))
    with pytest.raises(ProxyError, match="An error occurred with the API request"):
        StoryFrameClient().generate_story("a fox")


def test_comic_page_payload_is_decoded(monkeypatch):
    monkeypatch.setattr(client_module.requests, "post", lambda *a, **kw: FakeResponse(
        200, {"result": {"imageBase64": "aGVsbG8=", "mimeType": "image/jpeg"}}))
    page = StoryFrameClient().generate_comic_page(
        [PanelDescription(panel=1, visual_description="v", caption="c")], "Default")
    assert page.data == b"hello"
    assert page.mime_type == "image/jpeg"
