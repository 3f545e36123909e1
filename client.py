from typing import Any, List

import requests

from storyframe import (EMPTY_BREAKDOWN_MSG, INAPPROPRIATE_PROMPT_MSG, INAPPROPRIATE_STORY_MSG,
                        ComicPage, ComicResult, InappropriateContentError, PanelDescription,
                        ProxyError)


class StoryFrameClient:
    def __init__(self, base_url="http://localhost:5001", timeout: int = 300):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def call(self, action: str, payload: dict) -> Any:
        """POST one action to the proxy and return its result"""
        try:
            response = requests.post(
                f"{self.base_url}/api/",
                json={"action": action, "payload": payload},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            print(f"API call failed for action \"{action}\": {e}")
            raise ProxyError(f"Network request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.ok:
            message = data.get("error") if isinstance(data, dict) else None
            raise ProxyError(message or "An error occurred with the API request.")

        return data.get("result")

    def is_content_inappropriate(self, text: str) -> bool:
        if not text.strip():
            return False
        return bool(self.call("isContentInappropriate", {"text": text}))

    def translate_to_english(self, text: str) -> str:
        if not text.strip():
            return text
        return self.call("translateToEnglish", {"text": text})

    def generate_story(self, prompt: str) -> str:
        return self.call("generateStory", {"prompt": prompt})

    def generate_panel_breakdown(self, story: str) -> List[PanelDescription]:
        result = self.call("generatePanelBreakdown", {"story": story}) or []
        return [PanelDescription.model_validate(p) for p in result]

    def generate_comic_page(self, descriptions: List[PanelDescription], style: str) -> ComicPage:
        result = self.call("generateComicPage", {
            "descriptions": [d.model_dump() for d in descriptions],
            "style": style,
        })
        return ComicPage.from_payload(result)

    def write_story(self, prompt: str) -> str:
        if not prompt.strip():
            raise ValueError("A story idea is required")
        if self.is_content_inappropriate(prompt):
            raise InappropriateContentError(INAPPROPRIATE_PROMPT_MSG)
        return self.generate_story(self.translate_to_english(prompt))

    def create_comic(self, story: str, style: str = "Default") -> ComicResult:
        if not story.strip():
            raise ValueError("Story text is required")
        if self.is_content_inappropriate(story):
            raise InappropriateContentError(INAPPROPRIATE_STORY_MSG)

        descriptions = self.generate_panel_breakdown(self.translate_to_english(story))
        if not descriptions:
            raise ProxyError(EMPTY_BREAKDOWN_MSG)

        page = self.generate_comic_page(descriptions, style)
        return ComicResult(panels=descriptions, page=page)
