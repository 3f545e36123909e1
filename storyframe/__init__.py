# storyframe/__init__.py
import os
import io
import json
import base64
import random
import string
import argparse
from pathlib import Path
from typing import List, Literal, Optional, Sequence

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError
import httpx
from PIL import Image

from google import genai
from google.genai import errors, types

# ------------------ ENV & CONFIG ------------------
load_dotenv()

# Models (override via env if your account uses different names)
TEXT_MODEL = os.getenv("TEXT_MODEL", "gemini-2.5-flash")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gemini-2.5-flash-image-preview")

PRINT_PROMPTS = os.getenv("PRINT_PROMPTS", "1") == "1"
DRAFT_FILE = Path(os.getenv("DRAFT_FILE", ".storyframe.json"))
DRAFT_KEY = "storyFrameData"


def load_api_key() -> str:
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    if not api_key:
        raise RuntimeError("Missing GEMINI_API_KEY in .env")
    return api_key

# ------------------ PROMPTS -----------------------
PROMPTS_DIR = Path(__file__).parent / "prompts"


def load_prompt(name: str) -> str:
    p = PROMPTS_DIR / f"{name}.txt"
    if not p.exists():
        raise FileNotFoundError(f"Prompt file not found: {p}")
    return p.read_text(encoding="utf-8")


MODERATION_TEMPLATE = load_prompt("moderation")
TRANSLATION_TEMPLATE = load_prompt("translation")
STORY_TEMPLATE = load_prompt("story")
BREAKDOWN_TEMPLATE = load_prompt("panel_breakdown")
COMIC_PAGE_TEMPLATE = load_prompt("comic_page")

VisualStyle = Literal["Default", "Cartoonish", "Realistic", "Anime", "Vintage"]

STYLE_PROMPTS = {
    "Default": "a clean, modern comic book art style",
    "Cartoonish": "a vibrant, slightly cartoonish comic book art style with clean lines and dynamic shading",
    "Realistic": "a photorealistic style, with detailed textures, cinematic lighting, and a grounded color palette",
    "Anime": "a classic Japanese anime style, with expressive characters, cel-shading, and dynamic action lines",
    "Vintage": "a retro, vintage comic book style from the 1960s, using halftone dots, limited color palettes, and bold ink lines",
}

MODERATION_MAX_TOKENS = 5

INAPPROPRIATE_STORY_MSG = "The story seems to contain inappropriate content. Please revise your story to proceed."
INAPPROPRIATE_PROMPT_MSG = "The provided prompt seems to contain inappropriate content. Please try a different idea."
STORY_FAILED_MSG = "Story generation failed. Please try a different prompt."
EMPTY_BREAKDOWN_MSG = "Could not generate a storyboard from the provided text."

# ------------------ ERRORS ------------------------


class ComicGenerationError(RuntimeError):
    """Base for every failure surfaced to the user as a single message."""


class InappropriateContentError(ComicGenerationError):
    pass


class GatewayError(ComicGenerationError):
    """The model request itself failed (network, quota, server side)."""


class ModerationError(ComicGenerationError):
    pass


class StoryGenerationError(ComicGenerationError):
    pass


class BreakdownError(ComicGenerationError):
    pass


class ContentBlockedError(ComicGenerationError):
    """The model refused the request (block reason or non-STOP finish)."""


class ImageGenerationError(ComicGenerationError):
    pass


class ProxyError(ComicGenerationError):
    pass

# ------------------ DATA MODELS -------------------


class PanelDescription(BaseModel):
    panel: int = Field(ge=1, description="The sequential number of the panel.")
    visual_description: str = Field(
        description="A detailed visual description for the image generation AI.")
    caption: str = Field(
        description="The dialogue or narrative caption for the panel.")


class PanelBreakdown(BaseModel):
    panels: List[PanelDescription]


class ComicPage(BaseModel):
    data: bytes
    mime_type: str

    def to_payload(self) -> dict:
        return {
            "imageBase64": base64_text(self.data),
            "mimeType": self.mime_type,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "ComicPage":
        return cls(data=base64_bytes(payload["imageBase64"]), mime_type=payload["mimeType"])


class ComicResult(BaseModel):
    panels: List[PanelDescription]
    page: ComicPage


class Draft(BaseModel):
    story: str = ""
    visualStyle: VisualStyle = "Default"

# ------------------ UTILITIES ---------------------


def fill(template: str, **kv):
    """Replace only specific placeholders, leaving JSON braces alone."""
    out = template
    for k, v in kv.items():
        out = out.replace(f"{{{k}}}", v)
    return out


def base64_text(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def base64_bytes(s: str) -> bytes:
    return base64.b64decode(s)


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def image_bytes_to_pil(b: bytes) -> Image.Image:
    return Image.open(io.BytesIO(b))


def pil_to_png_bytes(img: Image.Image) -> bytes:
    """Converts a PIL Image object to PNG bytes."""
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def get_style_prompt(style: str) -> str:
    return STYLE_PROMPTS.get(style, STYLE_PROMPTS["Default"])


def _reason_text(reason) -> str:
    # SDK reasons are str enums; fakes may hand over plain strings
    return str(getattr(reason, "value", reason))

# --- Simple prompt logger (stdout + file) ---


class PromptLogger:
    def __init__(self, out_file: Optional[Path] = None, echo: bool = PRINT_PROMPTS):
        self.out_file = out_file
        self.echo = echo
        self.lines: List[str] = []

    def log(self, title: str, content: str):
        block = f"\n===== {title} =====\n{content.strip()}\n"
        self.lines.append(block)
        if self.echo:
            print(block)

    def flush(self):
        if self.out_file is None:
            return
        self.out_file.write_text("".join(self.lines), encoding="utf-8")

# ------------------ GENAI WRAPPER ----------------


class GeminiGateway:
    """Single handle on the hosted models, built once and passed around."""

    def __init__(self, api_key: str, text_model: str = TEXT_MODEL, image_model: str = IMAGE_MODEL):
        self.client = genai.Client(api_key=api_key)
        self.text_model = text_model
        self.image_model = image_model

    def generate_text(self, prompt: str, *, model: Optional[str] = None,
                      max_output_tokens: Optional[int] = None,
                      thinking_budget: Optional[int] = None,
                      response_schema=None) -> str:
        config = {}
        if max_output_tokens is not None:
            config["max_output_tokens"] = max_output_tokens
        if thinking_budget is not None:
            config["thinking_config"] = types.ThinkingConfig(
                thinking_budget=thinking_budget)
        if response_schema is not None:
            config["response_mime_type"] = "application/json"
            config["response_schema"] = response_schema

        try:
            resp = self.client.models.generate_content(
                model=model or self.text_model,
                contents=prompt,
                config=types.GenerateContentConfig(**config) if config else None,
            )
        except (errors.APIError, httpx.HTTPError) as e:
            raise GatewayError(f"Model request failed: {e}") from e

        if getattr(resp, "text", ""):
            return resp.text
        out = []
        for c in getattr(resp, "candidates", []) or []:
            content = getattr(c, "content", None)
            for p in getattr(content, "parts", None) or []:
                if getattr(p, "text", None):
                    out.append(p.text)
        return "\n".join(out).strip()

    def generate_composite(self, prompt: str, *, model: Optional[str] = None,
                           modalities: Sequence[str] = ("IMAGE", "TEXT")) -> types.GenerateContentResponse:
        try:
            return self.client.models.generate_content(
                model=model or self.image_model,
                contents=types.Content(role="user", parts=[types.Part(text=prompt)]),
                config=types.GenerateContentConfig(
                    response_modalities=list(modalities)),
            )
        except (errors.APIError, httpx.HTTPError) as e:
            raise GatewayError(f"Image request failed: {e}") from e

# ------------------ PIPELINE STEPS ---------------


def is_content_inappropriate(g, text: str, log: Optional[PromptLogger] = None) -> bool:
    if not text.strip():
        return False
    log = log or PromptLogger()
    prompt = fill(MODERATION_TEMPLATE, text=text)
    log.log("MODERATION_PROMPT", prompt)
    try:
        reply = g.generate_text(prompt, max_output_tokens=MODERATION_MAX_TOKENS,
                                thinking_budget=0)
    except GatewayError as e:
        raise ModerationError(f"Content safety check failed: {e}") from e
    log.log("MODERATION_RESPONSE", reply or "")
    return (reply or "").strip().upper() == "YES"


def translate_to_english(g, text: str, log: Optional[PromptLogger] = None) -> str:
    if not text.strip():
        return text
    log = log or PromptLogger()
    prompt = fill(TRANSLATION_TEMPLATE, text=text)
    log.log("TRANSLATION_PROMPT", prompt)
    try:
        reply = g.generate_text(prompt, thinking_budget=0)
    except GatewayError as e:
        print(f"[WARN] Translation failed, using original text: {e}")
        return text
    log.log("TRANSLATION_RESPONSE", reply or "")
    translated = (reply or "").strip()
    return translated or text


def generate_story(g, prompt: str, log: Optional[PromptLogger] = None) -> str:
    """Draft a 3-5 sentence story from a short idea."""
    log = log or PromptLogger()
    full_prompt = fill(STORY_TEMPLATE, prompt=prompt)
    log.log("STORY_GENERATION_PROMPT", full_prompt)
    try:
        story = g.generate_text(full_prompt)
    except GatewayError as e:
        print(f"[ERROR] Story generation failed: {e}")
        raise StoryGenerationError(STORY_FAILED_MSG) from e
    log.log("STORY_GENERATION_RESPONSE", story or "")
    story = (story or "").strip()
    if not story:
        raise StoryGenerationError(STORY_FAILED_MSG)
    return story


def generate_panel_breakdown(g, story: str, log: Optional[PromptLogger] = None) -> List[PanelDescription]:
    log = log or PromptLogger()
    prompt = fill(BREAKDOWN_TEMPLATE, story=story)
    log.log("PANEL_BREAKDOWN_PROMPT", prompt)
    reply = g.generate_text(prompt, response_schema=PanelBreakdown)
    log.log("PANEL_BREAKDOWN_RESPONSE", reply or "")

    try:
        breakdown = PanelBreakdown.model_validate_json((reply or "").strip())
    except ValidationError as e:
        raise BreakdownError(
            f"The storyboard returned by the model was malformed: {e.error_count()} problem(s) found.") from e

    panels = breakdown.panels
    if not panels:
        raise BreakdownError(EMPTY_BREAKDOWN_MSG)
    panels.sort(key=lambda x: x.panel)
    return panels


def build_comic_page_prompt(descriptions: Sequence[PanelDescription], style: str) -> str:
    panel_prompts = "\n\n".join(
        f'Panel {d.panel}:\nVisuals: {d.visual_description}\nCaption: "{d.caption}"'
        for d in descriptions
    )
    return fill(COMIC_PAGE_TEMPLATE,
                style_prompt=get_style_prompt(style),
                panel_count=str(len(descriptions)),
                panel_prompts=panel_prompts)


def generate_comic_page(g, descriptions: Sequence[PanelDescription], style: str,
                        log: Optional[PromptLogger] = None) -> ComicPage:
    """
    Render every panel onto one page image.

    Only the first inline image of the first candidate is used; any text
    the model sends alongside it is ignored.
    """
    if not descriptions:
        raise BreakdownError(EMPTY_BREAKDOWN_MSG)
    log = log or PromptLogger()
    prompt = build_comic_page_prompt(descriptions, style)
    log.log("COMIC_PAGE_PROMPT", prompt)
    response = g.generate_composite(prompt)

    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None)
        if block_reason:
            raise ContentBlockedError(
                f"Request was blocked. Reason: {_reason_text(block_reason)}. "
                "This is often due to content safety filters.")
        raise ContentBlockedError(
            "The model did not return any candidates. This could be due to a content safety filter blocking the request.")

    candidate = candidates[0]
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    if not parts:
        finish_reason = getattr(candidate, "finish_reason", None)
        if finish_reason and _reason_text(finish_reason) != "STOP":
            raise ContentBlockedError(
                f"Image generation failed. Reason: {_reason_text(finish_reason)}. "
                "This is often caused by content safety filters.")
        raise ImageGenerationError(
            "The model's response did not contain any content parts. "
            "This may be due to content safety filters or an internal error.")

    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            log.log("COMIC_PAGE_RESPONSE", f"{inline.mime_type}, {len(inline.data)} bytes")
            return ComicPage(data=inline.data, mime_type=inline.mime_type or "image/png")
        if getattr(part, "text", None):
            log.log("COMIC_PAGE_TEXT", part.text)

    raise ImageGenerationError(
        "No image was generated by the model. The response may have contained only text.")

# ------------------ FLOWS -------------------------


def write_story(g, prompt: str, log: Optional[PromptLogger] = None) -> str:
    if not prompt.strip():
        raise ValueError("A story idea is required")
    if is_content_inappropriate(g, prompt, log):
        raise InappropriateContentError(INAPPROPRIATE_PROMPT_MSG)
    translated = translate_to_english(g, prompt, log)
    return generate_story(g, translated, log)


def create_comic(g, story: str, style: str = "Default", log: Optional[PromptLogger] = None) -> ComicResult:
    """Moderate, translate, storyboard and draw one comic page."""
    if not story.strip():
        raise ValueError("Story text is required")

    print(">> Checking content safety...")
    if is_content_inappropriate(g, story, log):
        raise InappropriateContentError(INAPPROPRIATE_STORY_MSG)

    print(">> Translating and analyzing your story...")
    translated = translate_to_english(g, story, log)
    panels = generate_panel_breakdown(g, translated, log)
    print(f"   Panels: {len(panels)}")

    print(">> Drawing your comic page...")
    page = generate_comic_page(g, panels, style, log)
    return ComicResult(panels=panels, page=page)

# ------------------ DRAFTS ------------------------


class DraftStore:
    """The last story and style, kept under one key in a small JSON file."""

    def __init__(self, path: Optional[Path] = None, key: str = DRAFT_KEY):
        self.path = Path(path) if path else DRAFT_FILE
        self.key = key

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def load(self) -> Draft:
        data = self._read_all()
        raw = data.get(self.key)
        if raw is None:
            return Draft()
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                raw = None
        if isinstance(raw, dict):
            try:
                return Draft.model_validate(raw)
            except ValidationError:
                pass
            story = raw.get("story")
            if isinstance(story, str):
                # unusable style only: keep the story
                draft = Draft(story=story)
                self.save(draft)
                return draft
        # corrupted slot: drop it
        data.pop(self.key, None)
        self._write_all(data)
        return Draft()

    def save(self, draft: Draft) -> None:
        data = self._read_all()
        data[self.key] = draft.model_dump_json()
        self._write_all(data)

    def clear(self) -> None:
        data = self._read_all()
        if self.key in data:
            del data[self.key]
            self._write_all(data)

# ------------------ CLI -------------------------


def save_comic_result(result: ComicResult, out_dir: Path) -> Path:
    ensure_dir(out_dir)
    img = image_bytes_to_pil(result.page.data)
    print(f"   Page image: {img.size[0]}x{img.size[1]}, {result.page.mime_type}")
    page_path = out_dir / "comic_page.png"
    page_path.write_bytes(pil_to_png_bytes(img))
    panels = [p.model_dump() for p in result.panels]
    (out_dir / "panels.json").write_text(json.dumps(panels, indent=2), encoding="utf-8")
    return page_path


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Turn a story into a comic page.")
    parser.add_argument("story_file", nargs="?", help="Text file holding the story")
    parser.add_argument("--idea", help="Write the story from this idea first")
    parser.add_argument("--style", choices=list(STYLE_PROMPTS), default=None)
    parser.add_argument("--out", default="output", help="Root output directory")
    parser.add_argument("--resume", action="store_true", help="Use the saved draft")
    args = parser.parse_args(argv)

    g = GeminiGateway(load_api_key())
    store = DraftStore()
    draft = store.load() if args.resume else Draft()
    style = args.style or draft.visualStyle

    run_id = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    out_dir = Path(args.out) / f"comic-{run_id}"
    ensure_dir(out_dir)
    logger = PromptLogger(out_dir / "prompts_used.txt")

    try:
        if args.idea:
            print(">> Writing a story from your idea...")
            story = write_story(g, args.idea, logger)
        elif args.story_file:
            story = Path(args.story_file).read_text(encoding="utf-8")
        else:
            story = draft.story
        if not story.strip():
            print("No story given; pass a story file, --idea or --resume.")
            return 1

        store.save(Draft(story=story, visualStyle=style))
        result = create_comic(g, story, style, logger)
        page_path = save_comic_result(result, out_dir)
    except (ComicGenerationError, ValueError, OSError) as e:
        # OSError also covers files Pillow cannot identify
        print(f"[ERROR] {e}")
        return 1
    finally:
        logger.flush()

    print(f">> Done. Output at: {out_dir}")
    print(f">> Comic page: {page_path}")
    return 0

