"""
Рендер CanonicalReport → HTML (Jinja2) → PDF (Playwright / Chromium).

Секции отчёта, строго в этом порядке:
  1. Patient Information  : Name / Age / Sex / Date, пусто → "Not specified"
  2. Lab Category Summaries: в порядке CATEGORY_ORDER, только непустые;
     неизвестные категории уходят в "Other" как "<имя>: <текст>"
  3. Abnormal Findings    : таблица Test / Result / Reference Range / Note
     или "No abnormal findings detected."
  4. Overall Summary / Recommendations / Follow-up
  5. Дисклеймер
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from playwright.sync_api import sync_playwright

from labreport.schema import NOT_PROVIDED, NOT_SPECIFIED
from labreport.taxonomy import CATEGORY_ORDER, OTHER_CATEGORY, match_category


log = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
TEMPLATE_NAME = "report.html"

REPORT_TITLE = "Medical Laboratory Analysis Report"
NO_FINDINGS_MESSAGE = "No abnormal findings detected."
DISCLAIMER = (
    "Generated by AI Assistant – For clinical support only, "
    "not a substitute for physician judgment."
)

PDF_FILENAME = "lab_analysis_report.pdf"
PDF_FORMAT = "A4"
PDF_MARGIN = "15mm"
PDF_SCALE = 2


# ==========================
# helpers
# ==========================
def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _or_sentinel(value: Any, sentinel: str = NOT_SPECIFIED) -> str:
    return _text(value) or sentinel


# ==========================
# Контекст шаблона
# ==========================
def group_categories(entries: Any) -> List[Dict[str, Any]]:
    """
    categorized_analysis → секции в порядке справочника.
    Повтор известной категории: побеждает последняя запись, даже пустая
    (тогда секция не выводится).
    """
    known: Dict[str, str] = {}
    unknown: List[str] = []

    for entry in entries if isinstance(entries, list) else []:
        if not isinstance(entry, dict):
            continue
        name = _text(entry.get("category"))
        summary = _text(entry.get("summary"))
        if not name:
            continue
        canonical = match_category(name)
        if canonical is not None:
            known[canonical] = summary
        elif summary:
            unknown.append(f"{name}: {summary}")

    if unknown:
        log.info("Bucketing %d unknown categories under %s", len(unknown), OTHER_CATEGORY)

    sections: List[Dict[str, Any]] = []
    for cat in CATEGORY_ORDER:
        paragraphs = [known[cat]] if known.get(cat) else []
        if cat == OTHER_CATEGORY:
            paragraphs.extend(unknown)
        if paragraphs:
            sections.append({"title": cat, "paragraphs": paragraphs})
    return sections


def build_finding_rows(findings: Any) -> List[Dict[str, str]]:
    rows = []
    for f in findings if isinstance(findings, list) else []:
        if not isinstance(f, dict):
            continue
        rows.append({
            "test": _text(f.get("test")),
            "result": _text(f.get("result")),
            "reference_range": _or_sentinel(f.get("reference_range"), NOT_PROVIDED),
            "note": _text(f.get("note")),
        })
    return rows


def build_template_context(report: Dict[str, Any]) -> Dict[str, Any]:
    patient = report.get("patient")
    if not isinstance(patient, dict):
        patient = {}

    return {
        "title": REPORT_TITLE,
        "created_at": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "patient_rows": [
            ("Name", _or_sentinel(patient.get("name"))),
            ("Age", _or_sentinel(patient.get("age"))),
            ("Sex", _or_sentinel(patient.get("sex"))),
            ("Date", _or_sentinel(patient.get("date"))),
        ],
        "categories": group_categories(report.get("categorized_analysis")),
        "findings": build_finding_rows(report.get("abnormal_findings")),
        "no_findings_message": NO_FINDINGS_MESSAGE,
        "summary": _or_sentinel(report.get("summary")),
        "recommendations": _or_sentinel(report.get("recommendations")),
        "follow_up": _or_sentinel(report.get("follow_up")),
        "disclaimer": DISCLAIMER,
    }


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(["html", "xml"]),
    )


def render_report_html(report: Dict[str, Any], template_name: str = TEMPLATE_NAME, **extra: Any) -> str:
    """
    template_name: report.html (чистый отчёт, он же идёт в PDF)
    или report_page.html (отчёт + кнопки для браузера); extra уходит в шаблон.
    """
    tpl_path = TEMPLATES_DIR / template_name
    if not tpl_path.exists():
        raise FileNotFoundError(f"Template not found: {tpl_path.resolve()}")
    template = _environment().get_template(template_name)
    return template.render(**build_template_context(report), **extra)


# ==========================
# PDF: HTML -> PDF
# ==========================
def render_pdf_from_html(html: str, pdf_path: Optional[Path] = None) -> bytes:
    footer_template = """
    <div style="font-size:9px; width:100%; padding:0 15mm; color:#666; text-align:right;">
      Page <span class="pageNumber"></span> / <span class="totalPages"></span>
    </div>
    """

    with sync_playwright() as p:
        browser = p.chromium.launch()
        try:
            page = browser.new_page(device_scale_factor=PDF_SCALE)
            page.set_content(html, wait_until="load")
            pdf_bytes = page.pdf(
                path=str(pdf_path) if pdf_path else None,
                format=PDF_FORMAT,
                landscape=False,
                print_background=True,
                display_header_footer=True,
                header_template="<div></div>",
                footer_template=footer_template,
                margin={"top": PDF_MARGIN, "right": PDF_MARGIN, "bottom": PDF_MARGIN, "left": PDF_MARGIN},
            )
        finally:
            browser.close()

    log.info("Rendered PDF report (%d bytes)", len(pdf_bytes))
    return pdf_bytes


def export_report_pdf(report: Dict[str, Any], pdf_path: Optional[Path] = None) -> bytes:
    return render_pdf_from_html(render_report_html(report), pdf_path)
