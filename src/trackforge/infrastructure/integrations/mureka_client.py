"""Mureka generation client."""

import logging
from typing import Any

from trackforge.config import MurekaSettings
from trackforge.domain.exceptions import ProviderProtocolError
from trackforge.domain.value_objects import (
    GenerationRequest,
    PreparedContent,
    ResultCandidate,
    ServiceName,
    SubmitResult,
    TaskSnapshot,
    TaskStatus,
)

from .base_provider import BaseProviderClient

logger = logging.getLogger(__name__)

MUREKA_STATUS_TO_TASK_STATUS: dict[str, TaskStatus] = {
    "preparing": TaskStatus.QUEUED,
    "queued": TaskStatus.QUEUED,
    "running": TaskStatus.RUNNING,
    "streaming": TaskStatus.RUNNING,
    "succeeded": TaskStatus.SUCCEEDED,
    "failed": TaskStatus.FAILED,
    "timeouted": TaskStatus.FAILED,
    "cancelled": TaskStatus.FAILED,
}

MUREKA_PROGRESS: dict[TaskStatus, float] = {
    TaskStatus.QUEUED: 0.0,
    TaskStatus.RUNNING: 50.0,
    TaskStatus.SUCCEEDED: 100.0,
}

MUREKA_MODELS: dict[str, str] = {
    "auto": "auto",
    "V7": "mureka-7",
    "O1": "mureka-o1",
    "V6": "mureka-6",
}


def normalize_mureka_model(model: str | None, default: str = "auto") -> str:
    """Map UI model names onto Mureka API model ids. Unknown names fall back to auto."""
    name = (model or default).strip()
    if name in MUREKA_MODELS.values():
        return name
    if name.lower() == "auto":
        return "auto"
    return MUREKA_MODELS.get(name.upper(), "auto")


def _duration_seconds(value: Any) -> float | None:
    """Mureka reports milliseconds, sometimes as a string. Unparseable means unknown."""
    if value in (None, ""):
        return None
    try:
        return float(value) / 1000
    except (TypeError, ValueError):
        logger.warning("Ignoring unparseable mureka duration %r", value)
        return None


class MurekaClient(BaseProviderClient):
    """HTTP client for the Mureka song API.

    Hey future me - Mureka has no callback and its query endpoint is rate-limited
    hard, so ``supports_status_check`` is False: the sweeper fails stale Mureka
    jobs on a hard timeout instead of re-polling them.
    """

    STATUS_MAP = MUREKA_STATUS_TO_TASK_STATUS

    def __init__(self, settings: MurekaSettings, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self.mureka_settings = settings

    @property
    def service(self) -> ServiceName:
        return ServiceName.MUREKA

    @property
    def supports_status_check(self) -> bool:
        return False

    def build_payload(
        self, request: GenerationRequest, prepared: PreparedContent
    ) -> dict[str, Any]:
        return {
            "lyrics": prepared.lyrics,
            "model": normalize_mureka_model(request.model, self.mureka_settings.default_model),
            "prompt": prepared.prompt,
            "stream": False,
        }

    async def submit(self, payload: dict[str, Any]) -> SubmitResult:
        body = await self._request("POST", "/song/generate", json=payload)
        task_id = body.get("id")
        if not task_id:
            raise ProviderProtocolError("mureka accepted the request without an id", "mureka")
        logger.info("Submitted Mureka task %s", task_id)
        return SubmitResult(task_id=str(task_id), raw=body)

    async def query(self, task_id: str) -> TaskSnapshot:
        body = await self._request("GET", f"/song/query/{task_id}")
        raw_status = body.get("status")
        status = self.normalize_status(raw_status)

        results = []
        for choice in body.get("choices") or []:
            audio_url = choice.get("audio_url") or choice.get("url")
            if not audio_url:
                continue
            results.append(
                ResultCandidate(
                    audio_url=audio_url,
                    external_track_id=choice.get("id"),
                    title=choice.get("title"),
                    duration=_duration_seconds(choice.get("duration")),
                    lyrics=choice.get("lyrics"),
                    model_name=body.get("model"),
                )
            )

        if status == TaskStatus.SUCCEEDED and not results:
            raise ProviderProtocolError(
                f"mureka task {task_id} succeeded without audio", "mureka"
            )

        failed = status == TaskStatus.FAILED
        return TaskSnapshot(
            task_id=task_id,
            status=status,
            raw_status=raw_status,
            progress=MUREKA_PROGRESS.get(status),
            results=results,
            error_reason=body.get("failed_reason") or (raw_status if failed else None),
        )
