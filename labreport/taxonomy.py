"""
Справочник клинических категорий (CategoryTaxonomy).

Один упорядоченный список используется и в промпте, и в отчёте:
порядок здесь = порядок секций в отрендеренном отчёте.

match_category("  iron status ") -> "Iron Status"
match_category("Vitamins")       -> None
"""

from typing import Optional, Tuple


CATEGORY_ORDER: Tuple[str, ...] = (
    "Haematology",
    "Iron Status",
    "Renal Function & Metabolic",
    "Liver Function",
    "Lipids & Cardiovascular Risk",
    "Inflammatory Marker & CVD Risk",
    "Diabetes & Pancreatic",
    "Infectious Disease Serology",
    "Thyroid Function",
    "Tumour Markers",
    "Immunoserology",
    "Urinalysis",
    "Other",
)

OTHER_CATEGORY = "Other"

_BY_KEY = {name.lower(): name for name in CATEGORY_ORDER}


def category_key(name: str) -> str:
    return (name or "").strip().lower()


def match_category(name: str) -> Optional[str]:
    """Каноническое имя категории или None, если её нет в справочнике."""
    return _BY_KEY.get(category_key(name))
