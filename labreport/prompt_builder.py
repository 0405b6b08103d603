"""
Промпт для LLM: роль, требование «только JSON», категории и схема полей.

build_prompt(note) чистая функция, одинаковый note → одинаковый текст.
"""

import json
from typing import Optional

from labreport.schema import (
    ARRAY_FIELDS,
    NARRATIVE_FIELDS,
    schema_example,
)
from labreport.taxonomy import CATEGORY_ORDER


ROLE = "You are a clinical assistant specialized in interpreting blood test results."

JSON_ONLY = (
    "Analyze the attached blood test report and return ONLY valid JSON "
    "(no text outside JSON)."
)


def _field_rules() -> str:
    lines = [
        "Field rules:",
        "- patient: object with name, age, sex, date as free-text strings "
        "(use an empty string when the report does not state them).",
    ]
    for field in ARRAY_FIELDS:
        lines.append(f"- {field}: JSON array (use [] when there is nothing to report).")
    lines.append(
        "- abnormal_findings: one entry per out-of-range result; "
        "category must be one of the categories above."
    )
    lines.append(
        "- categorized_analysis: one entry per category that has results in the report; "
        "omit categories with no results."
    )
    for field, hint in NARRATIVE_FIELDS:
        lines.append(f"- {field}: free text. {hint}")
    return "\n".join(lines)


def build_prompt(note: Optional[str] = None) -> str:
    categories = "\n".join(f"- {cat}" for cat in CATEGORY_ORDER)
    schema = json.dumps(schema_example(), ensure_ascii=False, indent=2)

    prompt = f"""{ROLE}
{JSON_ONLY}

Group the results into these categories (in this order):
{categories}

Use this schema:

{schema}

{_field_rules()}"""

    note = (note or "").strip()
    if note:
        prompt += f"\n\nAdditional notes from the requester:\n{note}"
    return prompt
