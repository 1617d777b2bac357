from dataclasses import dataclass, field
from typing import List, Optional

from google import genai
from google.genai import types

from ..errors import ExternalCapabilityError
from ..utils.logging import logger

TEXT = "text"
IMAGE = "image"


@dataclass
class InlineImage:
    data: bytes
    mime_type: str


@dataclass
class Fragment:
    kind: str
    text: str = ""
    data: Optional[bytes] = None
    mime_type: str = ""

    @classmethod
    def from_text(cls, text):
        return cls(kind=TEXT, text=text)

    @classmethod
    def from_image(cls, data, mime_type):
        return cls(kind=IMAGE, data=data, mime_type=mime_type)


@dataclass
class GenerationResponse:
    # one fragment list per candidate, in model order
    candidates: List[List[Fragment]] = field(default_factory=list)


def _fragments(content):
    fragments = []
    for part in getattr(content, "parts", None) or []:
        text = getattr(part, "text", None)
        if text:
            fragments.append(Fragment.from_text(text))
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            fragments.append(Fragment.from_image(inline.data, inline.mime_type))
    return fragments


class GeminiImageGenerator:
    """Image-capable Gemini model behind a prompt + reference images call."""

    def __init__(self, api_key, model_name, client=None):
        self.model_name = model_name
        self.api_key = api_key
        self._client = client
        if client is None and not api_key:
            logger.warning("GEMINI_API_KEY not set, generation calls will fail")

    @property
    def client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def build_config(self, enable_web_search=False):
        tools = None
        if enable_web_search:
            tools = [types.Tool(google_search=types.GoogleSearch())]
        return types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"], tools=tools)

    def generate(self, prompt, images, enable_web_search=False):
        contents = [prompt]
        contents.extend(types.Part.from_bytes(data=img.data, mime_type=img.mime_type) for img in images)

        logger.info(f"Calling {self.model_name} with {len(images)} reference images (search={enable_web_search})")
        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=self.build_config(enable_web_search),
            )
        except Exception as e:
            raise ExternalCapabilityError(f"generation call failed: {e}") from e

        return GenerationResponse(
            candidates=[_fragments(getattr(c, "content", None)) for c in (response.candidates or [])]
        )
