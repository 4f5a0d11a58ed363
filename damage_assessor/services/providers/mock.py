"""
Offline provider returning canned remediation content.

Responses are picked from a digest of the input rather than at random so the
same photo or query always yields the same text, with or without caching.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import ChatMessage, KnowledgeResult, VisionResult

_VISION_RESPONSES: List[Dict[str, Any]] = [
    {
        "description": (
            "**Materials Damaged:** Painted drywall with bubbling/peeling paint, potential insulation behind wall. "
            "**Damage Class:** Class 2 (part of room affected). **Water Category:** Category 1 (clean water source). "
            "**Removal vs Drying:** Drywall can likely be dried in place if moisture content <25%, paint requires "
            "removal and reapplication. **Safety Issues:** No immediate structural concerns, standard PPE recommended."
        ),
        "confidence": 0.85,
    },
    {
        "description": (
            "**Materials Damaged:** Acoustic ceiling tiles (removal required), drywall substrate, potential ceiling "
            "insulation. **Damage Class:** Class 3 (ceiling overhead, gravity-fed). **Water Category:** Category 2 "
            "(gray water - potential contamination). **Room Concerns:** Structural integrity of ceiling joists "
            "requires inspection, containment recommended."
        ),
        "confidence": 0.78,
    },
    {
        "description": (
            "**Materials Damaged:** Laminate/hardwood flooring, subflooring, potential floor joists. "
            "**Damage Class:** Class 4 (specialty drying situations). **Water Category:** Category 1-2 (depends on "
            "source). **Removal vs Drying:** Flooring requires removal, subfloor assessment with moisture readings."
        ),
        "confidence": 0.82,
    },
]

_KNOWLEDGE_RESPONSES: List[Dict[str, Any]] = [
    {
        "response": (
            "According to IICRC S500 standards, water damage restoration should begin within 24-48 hours to "
            "prevent secondary damage including microbial growth. Class 2 water damage requires controlled "
            "drying with proper ventilation and monitoring."
        ),
        "data": [
            {
                "source": "IICRC S500 Standard",
                "content": "Water damage restoration timeline and classification guidelines",
                "score": 0.92,
            },
            {
                "source": "EPA Mold Remediation Guidelines",
                "content": "Prevention of microbial growth in water-damaged materials",
                "score": 0.88,
            },
        ],
    },
    {
        "response": (
            "Professional water extraction and structural drying are essential for Category 1 clean water "
            "damage. Porous materials like drywall may require replacement if saturation exceeds industry "
            "standards."
        ),
        "data": [
            {
                "source": "IICRC S500 Water Damage Restoration",
                "content": "Material evaluation and replacement criteria",
                "score": 0.95,
            },
            {
                "source": "Building Performance Institute Guidelines",
                "content": "Structural drying protocols and equipment specifications",
                "score": 0.87,
            },
        ],
    },
]

_GENERATED_RESPONSES: List[str] = [
    (
        "Based on the analysis, this appears to be a moderate water intrusion affecting drywall materials. "
        "**Immediate Action Required:** Have a certified restoration professional assess the area within 24 hours.\n\n"
        "**Recommended Steps:** 1) Document damage with photographs for insurance, 2) Remove wet materials like "
        "carpeting or padding, 3) Establish ventilation and dehumidification, 4) Monitor moisture levels daily.\n\n"
        "**What specific concerns do you have about this damage?**"
    ),
    (
        "The staining patterns suggest this damage has been developing over time, which increases the risk of "
        "microbial growth. **Emergency Steps:** Contact a certified restoration company and document everything "
        "for insurance purposes.\n\nProfessional water extraction and controlled drying are essential for "
        "preventing further structural damage.\n\n**Would you like me to explain the repair process?**"
    ),
    (
        "This damage affects both surface and potentially structural elements. **Critical Timeline:** "
        "Professional assessment within 24-48 hours.\n\n**Insurance Documentation:** Photograph from multiple "
        "angles, note the date of discovery and keep records of immediate actions. Restoration typically takes "
        "3-5 days.\n\n**Are you dealing with any insurance claims for this damage?**"
    ),
]


def _pick(seed: bytes, size: int) -> int:
    return int.from_bytes(hashlib.sha1(seed).digest()[:4], "big") % size


@dataclass
class MockAIProvider:
    latency_ms: int = 0
    calls: Dict[str, int] = field(default_factory=lambda: {"vision": 0, "knowledge": 0, "generation": 0})

    async def _simulate_latency(self) -> None:
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000)

    async def classify_image(self, image: bytes, prompt: str) -> VisionResult:
        self.calls["vision"] += 1
        await self._simulate_latency()
        entry = _VISION_RESPONSES[_pick(image, len(_VISION_RESPONSES))]
        return VisionResult(description=entry["description"], confidence=entry["confidence"])

    async def search_knowledge(self, query: str, *, limit: int = 3, score_threshold: float = 0.7) -> KnowledgeResult:
        self.calls["knowledge"] += 1
        await self._simulate_latency()
        entry = _KNOWLEDGE_RESPONSES[_pick(query.encode("utf-8"), len(_KNOWLEDGE_RESPONSES))]
        data = [dict(item) for item in entry["data"] if item["score"] >= score_threshold][:limit]
        return KnowledgeResult(response=entry["response"], data=data)

    async def generate_text(self, messages: List[ChatMessage], *, max_tokens: Optional[int] = None) -> str:
        self.calls["generation"] += 1
        await self._simulate_latency()
        seed = "\n".join(message.content for message in messages).encode("utf-8")
        return _GENERATED_RESPONSES[_pick(seed, len(_GENERATED_RESPONSES))]

    async def health(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None
