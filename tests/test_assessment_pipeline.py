from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from conftest import GIF_BYTES, StubProvider, data_uri, make_jpeg, make_png, make_webp
from damage_assessor.config import Settings
from damage_assessor.services import assessment_pipeline, envelope
from damage_assessor.services.assessment_pipeline import AssessmentPipeline, build_knowledge_query
from damage_assessor.services.cache_store import CacheBackend, CacheEntry, CacheStore
from damage_assessor.services.providers.base import KnowledgeResult, ProviderUnavailableError
from damage_assessor.services.providers.mock import MockAIProvider
from damage_assessor.services.request_batcher import RequestBatcher


def _pipeline(provider: StubProvider, settings: Optional[Settings] = None) -> AssessmentPipeline:
    settings = settings or Settings(enable_caching=True)
    return AssessmentPipeline(
        settings=settings,
        cache=CacheStore(enabled=settings.enable_caching, ttl_ms=settings.cache_ttl_ms),
        batcher=RequestBatcher(),
        provider=provider,
    )


@pytest.mark.asyncio
async def test_successful_assessment() -> None:
    provider = StubProvider()
    pipeline = _pipeline(provider)

    status, result = await pipeline.assess({"image": data_uri("image/jpeg", make_jpeg())})

    assert status == 200
    assert result.success
    assert result.vision_analysis == provider.description
    assert result.enhanced_assessment == provider.reply
    assert result.industry_sources[0]["source"] == "IICRC S500 Standard"
    assert result.confidence_score == pytest.approx(0.82)
    assert result.performance.cached is False
    assert result.performance.total_time_ms > 0
    assert set(result.performance.stages) == {"vision_ms", "knowledge_ms", "generation_ms"}
    assert provider.calls == {"vision": 1, "knowledge": 1, "generation": 1}


@pytest.mark.asyncio
async def test_prompts_chain_stage_outputs() -> None:
    provider = StubProvider()
    pipeline = _pipeline(provider)

    await pipeline.assess({"image": data_uri("image/png", make_png())})

    assert provider.queries == [build_knowledge_query(provider.description)]
    assert "IICRC standards" in provider.queries[0]
    system, user = provider.messages[0]
    assert system.role == "system"
    assert "certified water damage restoration expert" in system.content
    assert f"Vision Analysis: {provider.description}" in user.content
    assert "IICRC S500 requires drying" in user.content
    assert "5) Insurance documentation requirements" in user.content


@pytest.mark.asyncio
async def test_empty_knowledge_uses_standard_practices_prompt() -> None:
    provider = StubProvider(knowledge=KnowledgeResult())
    pipeline = _pipeline(provider)

    status, result = await pipeline.assess({"image": data_uri("image/webp", make_webp())})

    assert status == 200
    assert result.industry_sources == []
    assert "standard practices" in provider.messages[0][1].content


@pytest.mark.asyncio
async def test_missing_confidence_falls_back_to_threshold() -> None:
    pipeline = _pipeline(StubProvider(confidence=None))

    _, result = await pipeline.assess({"image": data_uri("image/jpeg", make_jpeg())})

    assert result.confidence_score == pytest.approx(0.7)


@pytest.mark.parametrize(
    ("payload", "error_code"),
    [
        ([1, 2, 3], "invalid_body"),
        ({}, "invalid_field"),
        ({"image": 42}, "invalid_field"),
        ({"image": "not-a-data-uri"}, "invalid_format"),
        ({"image": "data:image/gif;base64,R0lGODlh"}, "invalid_format"),
        ({"image": "data:image/jpeg;base64,@@@not base64@@@"}, "invalid_base64"),
        ({"image": data_uri("image/jpeg", GIF_BYTES)}, "invalid_signature"),
        ({"image": data_uri("image/jpeg", make_png())}, "type_mismatch"),
        ({"image": data_uri("image/png", make_png(width=0))}, "structure_invalid"),
    ],
)
@pytest.mark.asyncio
async def test_rejections_return_400_without_calling_ai(payload, error_code: str) -> None:
    provider = StubProvider()
    pipeline = _pipeline(provider)

    status, result = await pipeline.assess(payload)

    assert status == 400
    assert result.success is False
    assert result.error_code == error_code
    assert result.vision_analysis == ""
    assert result.enhanced_assessment == ""
    assert provider.calls == {"vision": 0, "knowledge": 0, "generation": 0}


@pytest.mark.asyncio
async def test_type_mismatch_label() -> None:
    _, result = await _pipeline(StubProvider()).assess({"image": data_uri("image/jpeg", make_png())})

    assert result.error == "Image type mismatch"


@pytest.mark.asyncio
async def test_oversized_payload_rejected_before_decoding(monkeypatch: pytest.MonkeyPatch) -> None:
    def _never(encoded: str) -> bytes:
        raise AssertionError("decode must not run for oversized payloads")

    monkeypatch.setattr(envelope, "decode_image_data", _never)
    settings = Settings(enable_caching=True, max_file_size=1024)
    image = "data:image/jpeg;base64," + "A" * 2048

    status, result = await _pipeline(StubProvider(), settings).assess({"image": image})

    assert status == 413
    assert result.error == "File too large"
    assert result.error_code == "too_large"


@pytest.mark.asyncio
async def test_decoded_size_ceiling() -> None:
    settings = Settings(enable_caching=True, max_decoded_size=16)

    status, result = await _pipeline(StubProvider(), settings).assess({"image": data_uri("image/jpeg", make_jpeg())})

    assert status == 413
    assert result.error_code == "too_large"


@pytest.mark.asyncio
async def test_repeat_upload_served_from_cache() -> None:
    provider = StubProvider()
    pipeline = _pipeline(provider)
    payload = {"image": data_uri("image/jpeg", make_jpeg())}

    _, first = await pipeline.assess(payload)
    status, second = await pipeline.assess(payload)

    assert status == 200
    assert second.performance.cached is True
    assert second.enhanced_assessment == first.enhanced_assessment
    assert second.vision_analysis == first.vision_analysis
    assert provider.calls == {"vision": 1, "knowledge": 1, "generation": 1}


@pytest.mark.asyncio
async def test_caching_disabled_calls_providers_each_time() -> None:
    provider = StubProvider()
    pipeline = _pipeline(provider, Settings(enable_caching=False))
    payload = {"image": data_uri("image/jpeg", make_jpeg())}

    await pipeline.assess(payload)
    _, second = await pipeline.assess(payload)

    assert second.performance.cached is False
    assert provider.calls["vision"] == 2


@pytest.mark.asyncio
async def test_knowledge_failure_degrades_gracefully() -> None:
    provider = StubProvider(knowledge_error=RuntimeError("vector store offline"))
    pipeline = _pipeline(provider)

    status, result = await pipeline.assess({"image": data_uri("image/jpeg", make_jpeg())})

    assert status == 200
    assert result.success
    assert result.industry_sources == []
    assert "standard practices" in provider.messages[0][1].content


@pytest.mark.asyncio
async def test_autorag_disabled_skips_knowledge() -> None:
    provider = StubProvider()
    pipeline = _pipeline(provider, Settings(enable_caching=True, enable_autorag=False))

    status, _ = await pipeline.assess({"image": data_uri("image/jpeg", make_jpeg())})

    assert status == 200
    assert provider.calls["knowledge"] == 0


@pytest.mark.asyncio
async def test_concurrent_identical_uploads_share_vision_call() -> None:
    provider = StubProvider(vision_delay=0.05)
    pipeline = _pipeline(provider)
    payload = {"image": data_uri("image/jpeg", make_jpeg())}

    results = await asyncio.gather(*(pipeline.assess(payload) for _ in range(10)))

    assert all(status == 200 for status, _ in results)
    assert provider.calls["vision"] == 1
    assert len({result.enhanced_assessment for _, result in results}) == 1


@pytest.mark.asyncio
async def test_vision_deadline_returns_504() -> None:
    provider = StubProvider(vision_hangs=True)
    pipeline = _pipeline(provider, Settings(enable_caching=True, stage_timeout_ms=50))

    status, result = await pipeline.assess({"image": data_uri("image/jpeg", make_jpeg())})

    assert status == 504
    assert result.error == "Request timeout"
    assert result.error_code == "ai_timeout"
    assert provider.calls["generation"] == 0


@pytest.mark.asyncio
async def test_vision_unavailable_returns_503_and_is_not_cached() -> None:
    provider = StubProvider(vision_error=ProviderUnavailableError("binding missing"))
    pipeline = _pipeline(provider)
    payload = {"image": data_uri("image/jpeg", make_jpeg())}

    status, result = await pipeline.assess(payload)
    assert status == 503
    assert result.error == "AI service unavailable"

    provider.vision_error = None
    status, result = await pipeline.assess(payload)
    assert status == 200
    assert result.performance.cached is False


@pytest.mark.asyncio
async def test_empty_generation_is_a_failure() -> None:
    pipeline = _pipeline(StubProvider(reply="   "))

    status, result = await pipeline.assess({"image": data_uri("image/jpeg", make_jpeg())})

    assert status == 500
    assert result.success is False
    assert result.error_code == "unexpected"


@pytest.mark.asyncio
async def test_mock_provider_is_deterministic_without_cache() -> None:
    settings = Settings(enable_caching=False)
    pipeline = AssessmentPipeline(
        settings=settings,
        cache=CacheStore(enabled=False),
        batcher=RequestBatcher(),
        provider=MockAIProvider(),
    )
    payload = {"image": data_uri("image/png", make_png(width=20, height=20))}

    _, first = await pipeline.assess(payload)
    _, second = await pipeline.assess(payload)

    assert first.success and second.success
    assert first.enhanced_assessment == second.enhanced_assessment
    assert first.industry_sources == second.industry_sources


@pytest.mark.asyncio
async def test_generation_deadline_returns_504_and_is_not_cached() -> None:
    provider = StubProvider(generation_hangs=True)
    pipeline = _pipeline(provider, Settings(enable_caching=True, stage_timeout_ms=50))
    payload = {"image": data_uri("image/jpeg", make_jpeg())}

    status, result = await pipeline.assess(payload)
    assert status == 504
    assert result.error_code == "ai_timeout"
    assert result.enhanced_assessment == ""

    provider.generation_hangs = False
    status, result = await pipeline.assess(payload)
    assert status == 200
    assert result.performance.cached is False
    assert provider.calls["vision"] == 1


@pytest.mark.asyncio
async def test_cancelled_request_writes_nothing_to_cache() -> None:
    provider = StubProvider(vision_hangs=True)
    pipeline = _pipeline(provider)

    task = asyncio.ensure_future(pipeline.assess({"image": data_uri("image/jpeg", make_jpeg())}))
    while provider.calls["vision"] == 0:
        await asyncio.sleep(0.001)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0.05)

    assert await pipeline.cache.size() == 0
    assert pipeline.batcher.in_flight() == 0


@pytest.mark.asyncio
async def test_cache_hit_carries_a_fresh_timestamp(monkeypatch: pytest.MonkeyPatch) -> None:
    pipeline = _pipeline(StubProvider())
    payload = {"image": data_uri("image/jpeg", make_jpeg())}

    _, first = await pipeline.assess(payload)
    monkeypatch.setattr(assessment_pipeline, "utc_timestamp", lambda: "2030-01-01T00:00:00+00:00")
    _, second = await pipeline.assess(payload)

    assert second.performance.cached is True
    assert second.timestamp == "2030-01-01T00:00:00+00:00"
    assert first.timestamp != second.timestamp


class _UnreachableBackend(CacheBackend):
    async def get(self, key: str) -> Optional[CacheEntry]:
        raise ConnectionError("cache host unreachable")

    async def set(self, key: str, entry: CacheEntry, ttl_ms: int) -> None:
        raise ConnectionError("cache host unreachable")

    async def delete(self, key: str) -> None:
        raise ConnectionError("cache host unreachable")

    async def clear(self) -> None:
        raise ConnectionError("cache host unreachable")

    async def size(self) -> int:
        raise ConnectionError("cache host unreachable")


@pytest.mark.asyncio
async def test_unreachable_cache_backend_does_not_fail_assessment() -> None:
    provider = StubProvider()
    pipeline = AssessmentPipeline(
        settings=Settings(enable_caching=True),
        cache=CacheStore(enabled=True, backend=_UnreachableBackend()),
        batcher=RequestBatcher(),
        provider=provider,
    )
    payload = {"image": data_uri("image/jpeg", make_jpeg())}

    status, result = await pipeline.assess(payload)
    assert status == 200
    assert result.success

    status, result = await pipeline.assess(payload)
    assert status == 200
    assert result.performance.cached is False
    assert provider.calls["vision"] == 2
