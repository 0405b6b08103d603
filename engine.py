# engine.py: пайплайн анализа бланка
# upload → временный файл → промпт → LLM → нормализация → отчёт
# - временный файл удаляется всегда (успех / ошибка / исключение)
# - ретраев LLM нет, есть таймаут
# - сырой ответ модели при невалидном JSON: outputs/llm_raw_response.txt

import logging
import os
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Protocol, Tuple

from dotenv import load_dotenv

from labreport import temp_store
from labreport.errors import InvalidModelOutput, LabReportError, UpstreamCallFailed
from labreport.llm_client import DEFAULT_BASE_URL, DEFAULT_MODEL, OpenAIAnalysisClient
from labreport.normalizer import ModelOutput, normalize_output
from labreport.prompt_builder import build_prompt
from labreport.renderer import PDF_FILENAME, export_report_pdf
from labreport.temp_store import StoredRef


load_dotenv()

log = logging.getLogger(__name__)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ==========================
# НАСТРОЙКИ LLM
# ==========================
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL)
OPENAI_MODEL = os.getenv("OPENAI_MODEL", DEFAULT_MODEL)
STRUCTURED_OUTPUT = _env_flag("OPENAI_STRUCTURED_OUTPUT", True)
TIMEOUT_SEC = float(os.getenv("LLM_TIMEOUT_SEC", "120"))


# ==========================
# ПАПКИ / ФАЙЛЫ
# ==========================
OUT_DIR = Path(os.getenv("OUT_DIR", "outputs"))
RAW_RESPONSE_PATH = OUT_DIR / "llm_raw_response.txt"


class AnalysisClient(Protocol):
    def analyze(self, ref: StoredRef, prompt: str) -> ModelOutput: ...


_CLIENT: Optional[AnalysisClient] = None


def get_client() -> AnalysisClient:
    global _CLIENT
    if _CLIENT is None:
        _CLIENT = OpenAIAnalysisClient(
            api_key=OPENAI_API_KEY,
            model=OPENAI_MODEL,
            base_url=OPENAI_BASE_URL,
            timeout_sec=TIMEOUT_SEC,
            structured=STRUCTURED_OUTPUT,
        )
        log.info("Analysis client: model=%s structured=%s", OPENAI_MODEL, STRUCTURED_OUTPUT)
    return _CLIENT


def _dump_raw_response(text: str) -> None:
    try:
        OUT_DIR.mkdir(parents=True, exist_ok=True)
        RAW_RESPONSE_PATH.write_text(text or "", encoding="utf-8")
    except OSError as e:
        log.warning("Could not write %s: %s", RAW_RESPONSE_PATH, e)
    else:
        log.info("Raw model response saved to %s", RAW_RESPONSE_PATH)


# ==========================
# PUBLIC: анализ загруженного файла
# ==========================
def analyze_upload(
    stream: BinaryIO,
    filename: str,
    note: Optional[str] = None,
    client: Optional[AnalysisClient] = None,
    upload_dir: Optional[Path] = None,
) -> Dict[str, Any]:
    client = client or get_client()

    with temp_store.stored_upload(stream, filename, upload_dir) as ref:
        prompt = build_prompt(note)
        try:
            raw = client.analyze(ref, prompt)
        except LabReportError:
            raise
        except Exception as e:
            log.exception("Analysis call failed")
            raise UpstreamCallFailed(str(e)) from e

        try:
            report = normalize_output(raw)
        except InvalidModelOutput as e:
            _dump_raw_response(e.raw_text)
            raise

    log.info(
        "Report ready: %d abnormal findings, %d categories",
        len(report["abnormal_findings"]),
        len(report["categorized_analysis"]),
    )
    return report


# ==========================
# PUBLIC: PDF отчёт
# ==========================
def generate_pdf_report(report: Dict[str, Any]) -> Tuple[bytes, str]:
    return export_report_pdf(report), PDF_FILENAME
