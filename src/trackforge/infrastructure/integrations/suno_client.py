"""Suno (sunoapi.org) generation client."""

import logging
from typing import Any

from trackforge.config import SunoSettings
from trackforge.domain.exceptions import ProviderProtocolError, ProviderRejected
from trackforge.domain.value_objects import (
    GenerationRequest,
    PreparedContent,
    ResultCandidate,
    ServiceName,
    SubmitResult,
    TaskSnapshot,
    TaskStatus,
)
from trackforge.domain.value_objects.content_preparation import is_placeholder_lyrics

from .base_provider import BaseProviderClient

logger = logging.getLogger(__name__)

# Hey future me - record-info reports these. Anything containing FAILED is terminal too,
# normalize_status handles that case below since new *_FAILED codes show up now and then.
SUNO_STATUS_TO_TASK_STATUS: dict[str, TaskStatus] = {
    "PENDING": TaskStatus.QUEUED,
    "TEXT_SUCCESS": TaskStatus.RUNNING,
    "FIRST_SUCCESS": TaskStatus.RUNNING,
    "SUCCESS": TaskStatus.SUCCEEDED,
    "CREATE_TASK_FAILED": TaskStatus.FAILED,
    "GENERATE_AUDIO_FAILED": TaskStatus.FAILED,
    "CALLBACK_EXCEPTION": TaskStatus.FAILED,
    "SENSITIVE_WORD_ERROR": TaskStatus.FAILED,
}

DEFAULT_STYLE = "Pop, Electronic"


def normalize_suno_model(model: str | None, default: str) -> str:
    """Map UI model names like ``chirp-v3-5`` onto API names like ``V3_5``."""
    if not model:
        return default
    name = model.strip()
    if name.lower().startswith("chirp-v"):
        name = "V" + name[len("chirp-v") :]
    return name.replace("-", "_").replace(".", "_").upper()


def parse_suno_track(item: dict[str, Any]) -> ResultCandidate | None:
    """Build a candidate from a record-info or callback track entry.

    record-info uses camelCase keys and the callback uses snake_case.
    """
    audio_url = item.get("audioUrl") or item.get("audio_url")
    if not audio_url:
        return None
    return ResultCandidate(
        audio_url=audio_url,
        external_track_id=item.get("id"),
        title=item.get("title"),
        duration=item.get("duration"),
        lyrics=item.get("prompt") or item.get("lyric"),
        tags=item.get("tags"),
        model_name=item.get("modelName") or item.get("model_name"),
        image_url=item.get("imageUrl") or item.get("image_url"),
    )


class SunoClient(BaseProviderClient):
    """HTTP client for the Suno generation API."""

    STATUS_MAP = SUNO_STATUS_TO_TASK_STATUS

    def __init__(self, settings: SunoSettings, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self.suno_settings = settings

    @property
    def service(self) -> ServiceName:
        return ServiceName.SUNO

    def normalize_status(self, raw_status: str | None) -> TaskStatus:
        if raw_status and raw_status not in self.STATUS_MAP and "FAILED" in raw_status.upper():
            return TaskStatus.FAILED
        return super().normalize_status(raw_status)

    def build_payload(
        self, request: GenerationRequest, prepared: PreparedContent
    ) -> dict[str, Any]:
        """Build a custom-mode generate body.

        Sentinel lyrics aren't sent: Suno writes its own lyrics when the field is absent.
        """
        payload: dict[str, Any] = {
            "prompt": prepared.prompt,
            "customMode": True,
            "style": request.style or prepared.prompt or DEFAULT_STYLE,
            "title": request.title or "Generated Track",
            "instrumental": request.instrumental,
            "model": normalize_suno_model(request.model, self.suno_settings.default_model),
            "callBackUrl": self.suno_settings.callback_url,
        }
        if not request.instrumental and not is_placeholder_lyrics(prepared.lyrics):
            payload["lyrics"] = prepared.lyrics
        return payload

    @staticmethod
    def _unwrap(body: dict[str, Any]) -> dict[str, Any]:
        """Suno wraps every answer in {code, msg, data}. Non-200 codes are business errors."""
        code = body.get("code")
        if code != 200:
            raise ProviderRejected(
                f"suno error {code}: {body.get('msg') or 'unknown error'}",
                "suno",
                status_code=code if isinstance(code, int) else None,
            )
        data = body.get("data")
        if not isinstance(data, dict):
            raise ProviderProtocolError("suno response has no data object", "suno")
        return data

    async def submit(self, payload: dict[str, Any]) -> SubmitResult:
        body = await self._request("POST", "/api/v1/generate", json=payload)
        data = self._unwrap(body)
        task_id = data.get("taskId") or data.get("task_id")
        if not task_id:
            raise ProviderProtocolError("suno accepted the request without a taskId", "suno")
        logger.info("Submitted Suno task %s", task_id)
        return SubmitResult(task_id=str(task_id), raw=body)

    async def query(self, task_id: str) -> TaskSnapshot:
        body = await self._request(
            "GET", "/api/v1/generate/record-info", params={"taskId": task_id}
        )
        return self.snapshot_from_record(task_id, self._unwrap(body))

    def snapshot_from_record(self, task_id: str, data: dict[str, Any]) -> TaskSnapshot:
        """Translate a record-info ``data`` object into a TaskSnapshot."""
        raw_status = data.get("status")
        status = self.normalize_status(raw_status)
        tracks = (data.get("response") or {}).get("sunoData") or []
        results = [c for c in (parse_suno_track(item) for item in tracks) if c is not None]

        if status == TaskStatus.SUCCEEDED and not results:
            # SUCCESS without audio happens briefly before URLs are published
            status = TaskStatus.RUNNING

        progress = {TaskStatus.QUEUED: 0.0, TaskStatus.SUCCEEDED: 100.0}.get(status)
        if status == TaskStatus.RUNNING:
            progress = 50.0 if raw_status == "FIRST_SUCCESS" else 25.0

        return TaskSnapshot(
            task_id=task_id,
            status=status,
            raw_status=raw_status,
            progress=progress,
            results=results,
            error_reason=data.get("errorMessage")
            or (raw_status if status == TaskStatus.FAILED else None),
        )

    def snapshot_from_callback(self, payload: dict[str, Any]) -> TaskSnapshot:
        """Translate a Suno callback body into a TaskSnapshot.

        Raises:
            ProviderProtocolError: If the payload has no task id
        """
        data = payload.get("data") or {}
        task_id = data.get("task_id") or data.get("taskId")
        if not task_id:
            raise ProviderProtocolError("suno callback without task_id", "suno")

        callback_type = data.get("callbackType") or data.get("callback_type")
        tracks = data.get("data") or []
        results = [c for c in (parse_suno_track(item) for item in tracks) if c is not None]

        if payload.get("code") not in (200, None):
            return TaskSnapshot(
                task_id=str(task_id),
                status=TaskStatus.FAILED,
                raw_status=callback_type,
                error_reason=payload.get("msg") or "callback reported failure",
            )
        if callback_type == "complete" and results:
            return TaskSnapshot(
                task_id=str(task_id),
                status=TaskStatus.SUCCEEDED,
                raw_status=callback_type,
                progress=100.0,
                results=results,
            )
        return TaskSnapshot(
            task_id=str(task_id),
            status=TaskStatus.RUNNING,
            raw_status=callback_type,
            results=results,
        )
