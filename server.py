import os
from typing import Any, Callable, Dict, List, Tuple, Type

from flask import Flask, Response, current_app, jsonify, request
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from storyframe import (GeminiGateway, PanelDescription, PromptLogger, VisualStyle,
                        generate_comic_page, generate_panel_breakdown, generate_story,
                        is_content_inappropriate, load_api_key, translate_to_english)

# Load environment variables
load_dotenv()


app = Flask(__name__, static_folder=None)


def configure_gateway(flask_app: Flask) -> None:
    """Build the model gateway once, when the process starts."""
    try:
        flask_app.config["GATEWAY"] = GeminiGateway(load_api_key())
    except RuntimeError as e:
        print(f"Warning: {e}; /api/ will answer 500 until it is set")


configure_gateway(app)


# ------------------ PAYLOADS ---------------------


class TextPayload(BaseModel):
    text: str


class PromptPayload(BaseModel):
    prompt: str


class StoryPayload(BaseModel):
    story: str


class ComicPagePayload(BaseModel):
    descriptions: List[PanelDescription]
    style: VisualStyle = "Default"


def _moderate(g, p: TextPayload, log: PromptLogger) -> Any:
    return is_content_inappropriate(g, p.text, log)


def _translate(g, p: TextPayload, log: PromptLogger) -> Any:
    return translate_to_english(g, p.text, log)


def _story(g, p: PromptPayload, log: PromptLogger) -> Any:
    return generate_story(g, p.prompt, log)


def _breakdown(g, p: StoryPayload, log: PromptLogger) -> Any:
    return [d.model_dump() for d in generate_panel_breakdown(g, p.story, log)]


def _comic_page(g, p: ComicPagePayload, log: PromptLogger) -> Any:
    return generate_comic_page(g, p.descriptions, p.style, log).to_payload()


ACTIONS: Dict[str, Tuple[Type[BaseModel], Callable]] = {
    "isContentInappropriate": (TextPayload, _moderate),
    "translateToEnglish": (TextPayload, _translate),
    "generateStory": (PromptPayload, _story),
    "generatePanelBreakdown": (StoryPayload, _breakdown),
    "generateComicPage": (ComicPagePayload, _comic_page),
}


def error_response(message: str, status: int) -> Tuple[Response, int]:
    return jsonify({"error": message}), status


@app.errorhandler(405)
def method_not_allowed(_e):
    return error_response("Method Not Allowed", 405)


@app.route("/health")
def health_check():
    return jsonify({"status": "healthy"})


@app.route("/api/", methods=["POST"], strict_slashes=False)
def api_handler():
    """Relay one pipeline step to the model; keeps the API key server-side."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response("Request body must be a JSON object", 400)

    action = data.get("action")
    if action not in ACTIONS:
        return error_response("Invalid action specified", 400)

    payload_model, handler = ACTIONS[action]
    try:
        payload = payload_model.model_validate(data.get("payload") or {})
    except ValidationError as e:
        return error_response(f"Invalid payload for {action}: {e.error_count()} problem(s) found", 400)

    g = current_app.config.get("GATEWAY")
    if g is None:
        return error_response("The model gateway is not configured on the server.", 500)

    try:
        result = handler(g, payload, PromptLogger())
    except Exception as e:
        print(f"API Error on action {action}: {e}")
        return error_response(str(e) or "An internal server error occurred.", 500)

    return jsonify({"result": result})


if __name__ == "__main__":
    if "GATEWAY" not in app.config:
        # refuse to serve without a key
        raise SystemExit("Missing GEMINI_API_KEY in .env")
    print("✅ Model gateway configured")
    app.run(host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "5001")), debug=True, threaded=True)
