"""Split an ordered model response into the client payload and the chat history.

Text fragments go straight into both outputs. Image fragments leave a
placeholder in the payload and are queued, with the placeholder index, so the
caller can upload them and fill the slot afterwards without losing order.
"""
from dataclasses import dataclass, field
from typing import List

from .generation import IMAGE, TEXT

ASSISTANT = "assistant"


@dataclass
class PendingImage:
    data: bytes
    mime_type: str
    part_index: int


@dataclass
class SplitResponse:
    parts: List[dict] = field(default_factory=list)
    messages: List[dict] = field(default_factory=list)
    pending: List[PendingImage] = field(default_factory=list)

    def resolve(self, pending, path, url):
        self.parts[pending.part_index] = {
            "type": IMAGE,
            "image": {"mimeType": pending.mime_type, "path": path, "url": url},
        }


def split_fragments(fragments):
    result = SplitResponse()
    for fragment in fragments:
        if fragment.kind == TEXT:
            text = (fragment.text or "").strip()
            if not text:
                continue
            result.parts.append({"type": TEXT, "text": text})
            result.messages.append({"role": ASSISTANT, "type": TEXT, "content": text})
        elif fragment.kind == IMAGE and fragment.data:
            result.pending.append(
                PendingImage(fragment.data, fragment.mime_type, part_index=len(result.parts))
            )
            result.parts.append({"type": IMAGE, "image": {"mimeType": fragment.mime_type}})
    return result
