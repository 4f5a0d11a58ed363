from __future__ import annotations

import asyncio
import base64
import struct
import zlib
from typing import Dict, List, Optional

from damage_assessor.services.providers.base import ChatMessage, KnowledgeResult, VisionResult


def _png_chunk(kind: bytes, body: bytes) -> bytes:
    crc = zlib.crc32(kind + body) & 0xFFFFFFFF
    return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", crc)


def make_png(width: int = 4, height: int = 3) -> bytes:
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + _png_chunk(b"IHDR", ihdr) + _png_chunk(b"IEND", b"")


def make_jpeg(body: bytes = b"water-stained ceiling") -> bytes:
    # SOI, APP0, a baseline SOF0 declaring 640x480, payload, EOI.
    app0 = b"\xff\xe0" + struct.pack(">H", 16) + b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
    sof0 = b"\xff\xc0" + struct.pack(">HBHHB", 11, 8, 480, 640, 1) + b"\x01\x11\x00"
    return b"\xff\xd8" + app0 + sof0 + body + b"\xff\xd9"


def make_webp(width: int = 100, height: int = 50) -> bytes:
    bits = (width - 1) | ((height - 1) << 14)
    lossless = b"\x2f" + struct.pack("<I", bits) + b"\x11" * 5
    body = b"WEBP" + b"VP8L" + struct.pack("<I", len(lossless)) + lossless
    return b"RIFF" + struct.pack("<I", len(body)) + body


GIF_BYTES = b"GIF89a\x01\x00\x01\x00\x80\x00\x00\xff\xff\xff\x00\x00\x00!\xf9\x04\x01\x00\x00\x00\x00,\x00;"


def data_uri(mime: str, buffer: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(buffer).decode('ascii')}"


class StubProvider:
    """Configurable provider double; delays let concurrent callers overlap."""

    def __init__(
        self,
        *,
        description: str = "Water staining on drywall ceiling with visible sagging.",
        confidence: Optional[float] = 0.82,
        knowledge: Optional[KnowledgeResult] = None,
        reply: str = "Dry the area within 48 hours. Have you checked for mold?",
        vision_delay: float = 0.0,
        vision_error: Optional[BaseException] = None,
        knowledge_error: Optional[BaseException] = None,
        generation_error: Optional[BaseException] = None,
        vision_hangs: bool = False,
        generation_hangs: bool = False,
    ) -> None:
        self.description = description
        self.confidence = confidence
        self.knowledge = knowledge if knowledge is not None else KnowledgeResult(
            response="IICRC S500 requires drying to begin within 24-48 hours.",
            data=[{"source": "IICRC S500 Standard", "content": "Drying timeline", "score": 0.92}],
        )
        self.reply = reply
        self.vision_delay = vision_delay
        self.vision_error = vision_error
        self.knowledge_error = knowledge_error
        self.generation_error = generation_error
        self.vision_hangs = vision_hangs
        self.generation_hangs = generation_hangs
        self.calls: Dict[str, int] = {"vision": 0, "knowledge": 0, "generation": 0}
        self.messages: List[List[ChatMessage]] = []
        self.queries: List[str] = []

    async def classify_image(self, image: bytes, prompt: str) -> VisionResult:
        self.calls["vision"] += 1
        if self.vision_hangs:
            await asyncio.Event().wait()
        if self.vision_delay:
            await asyncio.sleep(self.vision_delay)
        if self.vision_error is not None:
            raise self.vision_error
        return VisionResult(description=self.description, confidence=self.confidence)

    async def search_knowledge(self, query: str, *, limit: int = 3, score_threshold: float = 0.7) -> KnowledgeResult:
        self.calls["knowledge"] += 1
        self.queries.append(query)
        if self.knowledge_error is not None:
            raise self.knowledge_error
        return KnowledgeResult(response=self.knowledge.response, data=[dict(item) for item in self.knowledge.data])

    async def generate_text(self, messages: List[ChatMessage], *, max_tokens: Optional[int] = None) -> str:
        self.calls["generation"] += 1
        self.messages.append(list(messages))
        if self.generation_hangs:
            await asyncio.Event().wait()
        if self.generation_error is not None:
            raise self.generation_error
        return self.reply

