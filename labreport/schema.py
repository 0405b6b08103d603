"""
Схема итогового отчёта (CanonicalReport): в одном месте.

Из одной и той же таблицы полей строятся:
  - schema_example()      → JSON-образец, который вставляется в текст промпта
  - report_json_schema()  → JSON Schema для structured output у LLM API

Так промпт и машинная схема не расходятся.
"""

from typing import Any, Dict, List

from labreport.taxonomy import CATEGORY_ORDER, OTHER_CATEGORY


SCHEMA_VERSION = 1
SCHEMA_NAME = f"lab_report_v{SCHEMA_VERSION}"

NOT_SPECIFIED = "Not specified"
NOT_PROVIDED = "Not provided"

PATIENT_FIELDS = ("name", "age", "sex", "date")
FINDING_FIELDS = ("category", "test", "result", "reference_range", "note")
CATEGORY_FIELDS = ("category", "summary")

# поля-массивы: нормализатор гарантирует их наличие
ARRAY_FIELDS = ("abnormal_findings", "categorized_analysis")

# (поле, подсказка по содержанию и объёму)
NARRATIVE_FIELDS = (
    ("summary", "Concise overall clinical summary (3–5 sentences)."),
    ("recommendations", "Further tests or lifestyle/medication considerations."),
    ("follow_up", "Timeline for follow-up (e.g. 2 weeks)."),
)

# типографский апостроф: ремонт JSON меняет ' на " и сломал бы обычный
CATEGORY_SUMMARY_HINT = (
    "string (2–4 sentence clinical interpretation for this category. "
    "Include mention of both normal and abnormal findings, explain relevance, "
    "and what this means for the patient’s overall health.)"
)
OTHER_SUMMARY_HINT = "string (catch-all for any findings outside predefined categories, 1–2 sentences)"


def _category_hint(category: str) -> str:
    return OTHER_SUMMARY_HINT if category == OTHER_CATEGORY else CATEGORY_SUMMARY_HINT


def schema_example() -> Dict[str, Any]:
    example: Dict[str, Any] = {
        "patient": {f: "string" for f in PATIENT_FIELDS},
        "abnormal_findings": [{f: "string" for f in FINDING_FIELDS}],
        "categorized_analysis": [
            {"category": cat.upper(), "summary": _category_hint(cat)}
            for cat in CATEGORY_ORDER
        ],
    }
    for field, hint in NARRATIVE_FIELDS:
        example[field] = hint
    return example


def _string(description: str = "") -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": "string"}
    if description:
        out["description"] = description
    return out


def _strict_object(properties: Dict[str, Any]) -> Dict[str, Any]:
    # strict-режим structured output требует required = все поля
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties.keys()),
        "additionalProperties": False,
    }


def report_json_schema() -> Dict[str, Any]:
    category_names: List[str] = [cat.upper() for cat in CATEGORY_ORDER]

    properties: Dict[str, Any] = {
        "patient": _strict_object({f: _string() for f in PATIENT_FIELDS}),
        "abnormal_findings": {
            "type": "array",
            "items": _strict_object({f: _string() for f in FINDING_FIELDS}),
        },
        "categorized_analysis": {
            "type": "array",
            "items": _strict_object({
                "category": {"type": "string", "enum": category_names},
                "summary": _string(CATEGORY_SUMMARY_HINT),
            }),
        },
    }
    for field, hint in NARRATIVE_FIELDS:
        properties[field] = _string(hint)

    return _strict_object(properties)
