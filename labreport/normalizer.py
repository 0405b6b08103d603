"""
Нормализация ответа LLM → CanonicalReport (dict).

Ответ модели бывает:
  (a) уже объект (structured output по JSON Schema);
  (b) строка с валидным JSON;
  (c) JSON внутри текста / markdown-ограждения;
  (d) «почти JSON»: одинарные кавычки, висячие запятые, переводы строк.

Порядок попыток (первая удачная побеждает):
  1. структурированный объект: как есть;
  2. json.loads(text);
  3. жадный кусок от первой '{' до последней '}' + текстовые починки;
  4. иначе InvalidModelOutput (с исходным текстом).

Результат, который распарсился, но не является объектом (список, число),
считается неудачной попыткой.

После парсинга: abnormal_findings / categorized_analysis всегда списки.
Остальные поля не трогаем: заглушки "Not specified" подставляет рендер.

Известные ограничения эвристики:
  - жадный {...} захватит лишние скобки, если они есть в тексте после JSON;
  - замена ' → " портит апострофы внутри строк (it's → it"s).
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from labreport.errors import InvalidModelOutput
from labreport.schema import ARRAY_FIELDS


log = logging.getLogger(__name__)

_BRACED_SPAN = re.compile(r"\{[\s\S]*\}")
_LINE_BREAKS = re.compile(r"(\r\n|\n|\r)")
_COMMA_BEFORE_BRACE = re.compile(r",\s*}")
_COMMA_BEFORE_BRACKET = re.compile(r",\s*]")


# ==========================
# Ответ внешнего API: два варианта
# ==========================
@dataclass(frozen=True)
class StructuredOutput:
    data: Any


@dataclass(frozen=True)
class FreeTextOutput:
    text: Optional[str]


ModelOutput = Union[StructuredOutput, FreeTextOutput]


# ==========================
# Парсинг текста
# ==========================
def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        obj = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return obj if isinstance(obj, dict) else None


def repair_json_text(span: str) -> str:
    cleaned = _LINE_BREAKS.sub(" ", span)
    cleaned = cleaned.replace("'", '"')
    cleaned = _COMMA_BEFORE_BRACE.sub("}", cleaned)
    cleaned = _COMMA_BEFORE_BRACKET.sub("]", cleaned)
    return cleaned


def parse_model_json(text: Optional[str]) -> Dict[str, Any]:
    if not text or not text.strip():
        log.error("Model returned an empty response")
        raise InvalidModelOutput(raw_text=text or "")

    obj = _loads_object(text)
    if obj is not None:
        return obj

    match = _BRACED_SPAN.search(text)
    if match:
        obj = _loads_object(repair_json_text(match.group(0)))
        if obj is not None:
            log.info("Recovered JSON object after text repair")
            return obj
        log.error("Still invalid JSON after cleanup (len=%d)", len(text))
    else:
        log.error("No JSON object found in model response (len=%d)", len(text))

    raise InvalidModelOutput(raw_text=text)


# ==========================
# Приведение формы
# ==========================
def ensure_array_fields(report: Dict[str, Any]) -> Dict[str, Any]:
    """Копия отчёта с гарантированными списками; вход не меняется."""
    report = dict(report)
    for field in ARRAY_FIELDS:
        if not isinstance(report.get(field), list):
            if field in report:
                log.warning("Field %s is %s, replacing with []", field, type(report[field]).__name__)
            report[field] = []
    return report


def normalize_output(raw: Union[ModelOutput, Dict[str, Any], str, None]) -> Dict[str, Any]:
    if isinstance(raw, StructuredOutput):
        data = raw.data
        if not isinstance(data, dict):
            log.error("Structured output is %s, expected an object", type(data).__name__)
            raise InvalidModelOutput(raw_text=repr(data))
    elif isinstance(raw, FreeTextOutput):
        data = parse_model_json(raw.text)
    elif isinstance(raw, dict):
        data = raw
    elif raw is None or isinstance(raw, str):
        data = parse_model_json(raw)
    else:
        raise TypeError(f"Unsupported model output type: {type(raw).__name__}")

    return ensure_array_fields(data)
