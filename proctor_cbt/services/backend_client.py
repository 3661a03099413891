"""
services/backend_client.py

시험 백엔드 HTTP 클라이언트 (httpx 비동기).

응답은 {success, data, error, message, redirect} 봉투 형식이다.
  - start_exam      POST /exams/{id}/start[?testId=]
  - get_progress    GET  /exams/{id}/progress
  - save_progress   POST /exams/{id}/progress
  - submit_result   POST /results
"""

import logging
from typing import Any, Dict, Optional

import httpx

import config
from proctor_cbt.errors import BackendError, ExamLoadError, PersistenceError, SubmissionError
from proctor_cbt.models.session_state import SessionSnapshot
from proctor_cbt.models.submission import SubmissionPayload, SubmissionResponse

logger = logging.getLogger(__name__)

_UNAVAILABLE_MARKER = "not available at this time"


class ExamBackendClient:

    def __init__(
        self,
        base_url: str = config.BACKEND_URL,
        token: str = config.AUTH_TOKEN,
        timeout: float = config.HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── 공통 요청 ────────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise BackendError(f"요청 시간 초과: {method} {path}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"백엔드 연결 실패: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}

        if response.is_error:
            raise BackendError(
                data.get("error") or data.get("message") or f"API request failed ({response.status_code})",
                status_code=response.status_code,
            )
        return data

    # ── 엔드포인트 ───────────────────────────────────────────────────────────

    async def start_exam(self, exam_id: str, test_id: Optional[str] = None) -> Dict[str, Any]:
        params = {"testId": test_id} if test_id else None
        try:
            body = await self._request("POST", f"/exams/{exam_id}/start", params=params)
        except BackendError as e:
            raise ExamLoadError(str(e), unavailable=_UNAVAILABLE_MARKER in str(e)) from e
        if not body.get("success") or not isinstance(body.get("data"), dict):
            message = body.get("error") or "Failed to start exam"
            raise ExamLoadError(message, unavailable=_UNAVAILABLE_MARKER in message)
        return body["data"]

    async def get_progress(self, exam_id: str) -> Optional[SessionSnapshot]:
        """저장된 진행 상태. 없으면 None."""
        try:
            body = await self._request("GET", f"/exams/{exam_id}/progress")
        except BackendError as e:
            if e.status_code == 404:
                return None
            raise PersistenceError(str(e)) from e
        if not body.get("success") or not body.get("data"):
            return None
        try:
            return SessionSnapshot.model_validate(body["data"])
        except ValueError as e:
            raise PersistenceError(f"진행 상태 형식 오류: {e}") from e

    async def save_progress(self, exam_id: str, snapshot: SessionSnapshot) -> None:
        try:
            await self._request("POST", f"/exams/{exam_id}/progress", json=snapshot.to_wire())
        except BackendError as e:
            raise PersistenceError(str(e)) from e

    async def submit_result(self, payload: SubmissionPayload) -> SubmissionResponse:
        try:
            body = await self._request("POST", "/results", json=payload.to_wire())
        except BackendError as e:
            raise SubmissionError(str(e)) from e
        response = SubmissionResponse.model_validate(body)
        if not response.success:
            raise SubmissionError(response.error or "Failed to submit exam")
        return response
