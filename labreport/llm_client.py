"""
Клиент внешнего анализа: OpenAI Responses API через requests.

Шаги:
  1. POST /files      : загрузка PDF (purpose=assistants)
  2. POST /responses  : промпт + input_file
  3. DELETE /files/id : уборка (ошибка только логируется)

Режим structured (json_schema) → StructuredOutput, иначе FreeTextOutput.
Любой сбой сети / HTTP / отказ модели → UpstreamCallFailed.
Ретраев нет, на один запрос одна попытка.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from labreport.errors import UpstreamCallFailed
from labreport.normalizer import FreeTextOutput, ModelOutput, StructuredOutput
from labreport.schema import SCHEMA_NAME, report_json_schema
from labreport.temp_store import StoredRef


log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
TEMPERATURE = 0.3
CONNECT_TIMEOUT_SEC = 10


def _error_message(r: requests.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return f"HTTP {r.status_code}: {r.text[:800]}"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return err["message"]
    return f"HTTP {r.status_code}: {r.text[:800]}"


def extract_output_text(data: Dict[str, Any]) -> str:
    """
    Склеивает текст из output[].content[] (тип output_text).
    Отказ модели (refusal) → UpstreamCallFailed.
    """
    if isinstance(data.get("output_text"), str):
        return data["output_text"]

    parts: List[str] = []
    for item in data.get("output") or []:
        if item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            ctype = content.get("type")
            if ctype == "output_text":
                parts.append(content.get("text") or "")
            elif ctype == "refusal":
                raise UpstreamCallFailed(f"Model refused: {content.get('refusal') or 'no reason given'}")
    return "".join(parts)


class OpenAIAnalysisClient:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout_sec: float = 120,
        structured: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout: Tuple[float, float] = (CONNECT_TIMEOUT_SEC, timeout_sec)
        self.structured = structured
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise UpstreamCallFailed("OPENAI_API_KEY is not set")
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request(self, method: str, path: str, where: str, **kwargs: Any) -> requests.Response:
        try:
            r = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.exceptions.Timeout as e:
            log.error("%s timed out: %s", where, e)
            raise UpstreamCallFailed(f"Timed out waiting for the analysis service ({where})") from e
        except requests.exceptions.RequestException as e:
            log.error("%s failed: %s", where, e)
            raise UpstreamCallFailed(f"Could not reach the analysis service: {e}") from e

        if r.status_code >= 400:
            msg = _error_message(r)
            log.error("%s HTTP %s: %s", where, r.status_code, msg)
            raise UpstreamCallFailed(msg)
        return r

    def _json(self, r: requests.Response, where: str) -> Dict[str, Any]:
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamCallFailed(f"{where} returned a non-JSON body") from e

    # ==========================
    # Files API
    # ==========================
    def upload_file(self, ref: StoredRef) -> str:
        with ref.open() as fh:
            r = self._request(
                "POST",
                "/files",
                "files.create",
                files={"file": (ref.original_name, fh, "application/pdf")},
                data={"purpose": "assistants"},
            )
        file_id = self._json(r, "files.create").get("id")
        if not file_id:
            raise UpstreamCallFailed("files.create returned no file id")
        return file_id

    def delete_file(self, file_id: str) -> None:
        try:
            self._request("DELETE", f"/files/{file_id}", "files.delete")
        except UpstreamCallFailed as e:
            log.warning("Could not delete remote file %s: %s", file_id, e)

    # ==========================
    # Responses API
    # ==========================
    def build_payload(self, prompt: str, file_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "input": [
                {"role": "user", "content": [{"type": "input_text", "text": prompt}]},
                {"role": "user", "content": [{"type": "input_file", "file_id": file_id}]},
            ],
            "temperature": TEMPERATURE,
        }
        if self.structured:
            payload["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": SCHEMA_NAME,
                    "schema": report_json_schema(),
                    "strict": True,
                }
            }
        return payload

    def create_response(self, prompt: str, file_id: str) -> str:
        r = self._request("POST", "/responses", "responses.create", json=self.build_payload(prompt, file_id))
        return extract_output_text(self._json(r, "responses.create"))

    def analyze(self, ref: StoredRef, prompt: str) -> ModelOutput:
        file_id = self.upload_file(ref)
        try:
            text = self.create_response(prompt, file_id)
        finally:
            self.delete_file(file_id)

        if self.structured:
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                log.warning("Structured response was not valid JSON, falling back to text repair")
                return FreeTextOutput(text)
            return StructuredOutput(data)
        return FreeTextOutput(text)
