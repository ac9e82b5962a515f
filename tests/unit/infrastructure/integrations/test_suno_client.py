"""Tests for the Suno client (httpx.MockTransport, no network)."""

import json
from collections.abc import Callable

import httpx
import pytest

from trackforge.config import SunoSettings
from trackforge.domain.exceptions import (
    ConfigurationError,
    ProviderProtocolError,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
)
from trackforge.domain.value_objects import (
    GenerationRequest,
    InputMode,
    ServiceName,
    TaskStatus,
)
from trackforge.domain.value_objects.content_preparation import prepare_content
from trackforge.infrastructure.integrations.suno_client import (
    SunoClient,
    normalize_suno_model,
)

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def suno_settings() -> SunoSettings:
    return SunoSettings(api_key="test-key", callback_url="https://test/callback")


def _client(settings: SunoSettings, handler: Handler) -> SunoClient:
    return SunoClient(settings, transport=httpx.MockTransport(handler))


def _record(status: str, tracks: list[dict[str, object]] | None = None) -> dict[str, object]:
    return {
        "code": 200,
        "msg": "success",
        "data": {
            "taskId": "task-1",
            "status": status,
            "response": {"sunoData": tracks or []},
        },
    }


class TestPayload:
    """Submit body construction."""

    def test_user_lyrics_are_sent(self, suno_settings: SunoSettings) -> None:
        client = SunoClient(suno_settings)
        request = GenerationRequest(
            service=ServiceName.SUNO,
            input_mode=InputMode.LYRICS,
            lyrics="[Verse]\nHello",
            style="indie",
            title="Hello",
            model="chirp-v3-5",
        )

        payload = client.build_payload(request, prepare_content(request))

        assert payload["lyrics"] == "[Verse]\nHello"
        assert payload["style"] == "indie"
        assert payload["title"] == "Hello"
        assert payload["model"] == "V3_5"
        assert payload["customMode"] is True
        assert payload["callBackUrl"] == "https://test/callback"

    def test_sentinel_lyrics_are_not_sent(self, suno_settings: SunoSettings) -> None:
        client = SunoClient(suno_settings)
        request = GenerationRequest(service=ServiceName.SUNO, instrumental=True, style="ambient")

        payload = client.build_payload(request, prepare_content(request))

        assert "lyrics" not in payload
        assert payload["instrumental"] is True
        assert payload["prompt"] == "ambient"

    @pytest.mark.parametrize(
        ("model", "expected"),
        [(None, "V3_5"), ("chirp-v4", "V4"), ("v4.5", "V4_5"), ("V4_5PLUS", "V4_5PLUS")],
    )
    def test_model_normalization(self, model: str | None, expected: str) -> None:
        assert normalize_suno_model(model, "V3_5") == expected


class TestSubmit:
    async def test_submit_returns_task_id(self, suno_settings: SunoSettings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"code": 200, "data": {"taskId": "abc"}})

        client = _client(suno_settings, handler)
        result = await client.submit({"prompt": "x"})

        assert result.task_id == "abc"
        assert seen[0].url.path == "/api/v1/generate"
        assert seen[0].headers["Authorization"] == "Bearer test-key"
        assert json.loads(seen[0].content) == {"prompt": "x"}
        await client.close()

    async def test_business_error_code_is_rejected(self, suno_settings: SunoSettings) -> None:
        client = _client(
            suno_settings,
            lambda _: httpx.Response(200, json={"code": 429, "msg": "insufficient credits"}),
        )

        with pytest.raises(ProviderRejected, match="insufficient credits"):
            await client.submit({"prompt": "x"})

    async def test_missing_task_id_is_protocol_error(self, suno_settings: SunoSettings) -> None:
        empty = {"code": 200, "data": {}}
        client = _client(suno_settings, lambda _: httpx.Response(200, json=empty))

        with pytest.raises(ProviderProtocolError):
            await client.submit({"prompt": "x"})

    async def test_missing_api_key_is_configuration_error(self) -> None:
        client = SunoClient(SunoSettings(api_key=""))

        with pytest.raises(ConfigurationError):
            await client.submit({"prompt": "x"})


class TestErrorTranslation:
    """HTTP failures map onto the provider error taxonomy."""

    async def test_5xx_is_unavailable(self, suno_settings: SunoSettings) -> None:
        client = _client(suno_settings, lambda _: httpx.Response(503, text="down"))

        with pytest.raises(ProviderUnavailable) as exc_info:
            await client.query("task-1")
        assert exc_info.value.retryable is True

    async def test_4xx_is_rejected(self, suno_settings: SunoSettings) -> None:
        client = _client(suno_settings, lambda _: httpx.Response(404, text="no such task"))

        with pytest.raises(ProviderRejected) as exc_info:
            await client.query("task-1")
        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False

    async def test_timeout_is_provider_timeout(self, suno_settings: SunoSettings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(suno_settings, handler)

        with pytest.raises(ProviderTimeout):
            await client.query("task-1")

    async def test_connect_error_is_unavailable(self, suno_settings: SunoSettings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(suno_settings, handler)

        with pytest.raises(ProviderUnavailable):
            await client.query("task-1")

    async def test_non_json_body_is_protocol_error(self, suno_settings: SunoSettings) -> None:
        client = _client(suno_settings, lambda _: httpx.Response(200, text="<html>"))

        with pytest.raises(ProviderProtocolError):
            await client.query("task-1")


class TestQuery:
    """record-info translation."""

    async def test_success_with_tracks(self, suno_settings: SunoSettings) -> None:
        tracks = [
            {"id": "c1", "audioUrl": "https://cdn/1.mp3", "title": "One", "duration": 120.5},
            {"id": "c2", "audioUrl": "https://cdn/2.mp3", "title": "Two"},
        ]
        body = _record("SUCCESS", tracks)
        client = _client(suno_settings, lambda _: httpx.Response(200, json=body))

        snapshot = await client.query("task-1")

        assert snapshot.status == TaskStatus.SUCCEEDED
        assert snapshot.progress == 100.0
        assert snapshot.result_urls == ["https://cdn/1.mp3", "https://cdn/2.mp3"]
        assert snapshot.results[0].duration == 120.5

    async def test_success_without_audio_is_still_running(
        self, suno_settings: SunoSettings
    ) -> None:
        client = _client(suno_settings, lambda _: httpx.Response(200, json=_record("SUCCESS")))

        snapshot = await client.query("task-1")

        assert snapshot.status == TaskStatus.RUNNING

    @pytest.mark.parametrize(
        ("raw", "expected", "progress"),
        [
            ("PENDING", TaskStatus.QUEUED, 0.0),
            ("TEXT_SUCCESS", TaskStatus.RUNNING, 25.0),
            ("FIRST_SUCCESS", TaskStatus.RUNNING, 50.0),
            ("GENERATE_AUDIO_FAILED", TaskStatus.FAILED, None),
            ("SOME_NEW_FAILED", TaskStatus.FAILED, None),
            ("SOMETHING_ELSE", TaskStatus.RUNNING, 25.0),
        ],
    )
    async def test_status_mapping(
        self,
        suno_settings: SunoSettings,
        raw: str,
        expected: TaskStatus,
        progress: float | None,
    ) -> None:
        client = _client(suno_settings, lambda _: httpx.Response(200, json=_record(raw)))

        snapshot = await client.query("task-1")

        assert snapshot.status == expected
        assert snapshot.progress == progress
        assert snapshot.raw_status == raw

    async def test_failed_reason_from_error_message(self, suno_settings: SunoSettings) -> None:
        body = _record("CREATE_TASK_FAILED")
        body["data"]["errorMessage"] = "sensitive words"  # type: ignore[index]
        client = _client(suno_settings, lambda _: httpx.Response(200, json=body))

        snapshot = await client.query("task-1")

        assert snapshot.status == TaskStatus.FAILED
        assert snapshot.error_reason == "sensitive words"


class TestCallback:
    """Callback payload translation."""

    def test_complete_callback_succeeds(self, suno_settings: SunoSettings) -> None:
        client = SunoClient(suno_settings)
        payload = {
            "code": 200,
            "msg": "All generated successfully.",
            "data": {
                "callbackType": "complete",
                "task_id": "task-9",
                "data": [{"id": "c1", "audio_url": "https://cdn/1.mp3", "title": "One"}],
            },
        }

        snapshot = client.snapshot_from_callback(payload)

        assert snapshot.task_id == "task-9"
        assert snapshot.status == TaskStatus.SUCCEEDED
        assert snapshot.result_urls == ["https://cdn/1.mp3"]

    def test_intermediate_callback_is_running(self, suno_settings: SunoSettings) -> None:
        client = SunoClient(suno_settings)
        payload = {"code": 200, "data": {"callbackType": "first", "task_id": "task-9"}}

        assert client.snapshot_from_callback(payload).status == TaskStatus.RUNNING

    def test_error_code_fails(self, suno_settings: SunoSettings) -> None:
        client = SunoClient(suno_settings)
        payload = {"code": 501, "msg": "generation failed", "data": {"task_id": "task-9"}}

        snapshot = client.snapshot_from_callback(payload)

        assert snapshot.status == TaskStatus.FAILED
        assert snapshot.error_reason == "generation failed"

    def test_missing_task_id_raises(self, suno_settings: SunoSettings) -> None:
        with pytest.raises(ProviderProtocolError):
            SunoClient(suno_settings).snapshot_from_callback({"code": 200, "data": {}})
