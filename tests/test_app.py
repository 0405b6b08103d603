"""
Сквозные тесты HTTP-слоя (Flask test client, LLM подменён).

Сценарии:
  1. structured-ответ со всеми полями → 200 {report}
  2. ответ текстом с JSON внутри → массивы по умолчанию [], отчёт без категорий
  3. нет файла → 400 {"error": "No file uploaded"}, хранилище не трогаем
  4. внешний вызов упал → 5xx с сообщением, временный файл удалён
  + невалидный JSON, экспорт PDF, HTML-форма
"""

import io
import json
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import app as app_module
import engine
from labreport import temp_store
from labreport.normalizer import FreeTextOutput, StructuredOutput


FULL_REPORT = {
    "patient": {"name": "John Smith", "age": "52", "sex": "M", "date": "2024-03-10"},
    "abnormal_findings": [
        {"category": "IRON STATUS", "test": "Ferritin", "result": "8 ug/L",
         "reference_range": "30-400", "note": "Low iron stores"},
    ],
    "categorized_analysis": [
        {"category": "IRON STATUS", "summary": "Ferritin is low."},
        {"category": "HAEMATOLOGY", "summary": "Mild microcytosis."},
    ],
    "summary": "Iron deficiency pattern.",
    "recommendations": "Iron studies, dietary review.",
    "follow_up": "6 weeks",
}

SCENARIO_2_TEXT = (
    'Here is the result:\n{"patient":{"name":"Jane Doe","age":"40","sex":"F","date":"2024-01-01"},'
    '"summary":"ok","recommendations":"none","follow_up":"6 months"}'
)


class FakeClient:
    def __init__(self, output=None, error=None):
        self.output = output
        self.error = error
        self.paths = []
        self.prompts = []

    def analyze(self, ref, prompt):
        assert ref.path.exists()
        self.paths.append(ref.path)
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.output


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    target = tmp_path / "uploads"
    monkeypatch.setattr(temp_store, "UPLOAD_DIR", target)
    monkeypatch.setattr(engine, "OUT_DIR", tmp_path / "outputs")
    monkeypatch.setattr(engine, "RAW_RESPONSE_PATH", tmp_path / "outputs" / "llm_raw_response.txt")
    return target


@pytest.fixture
def http():
    app_module.app.config["TESTING"] = True
    return app_module.app.test_client()


def _use_client(monkeypatch, fake):
    monkeypatch.setattr(engine, "_CLIENT", fake)
    return fake


def _pdf_upload(**extra):
    data = {"file": (io.BytesIO(b"%PDF-1.4 test"), "blood.pdf")}
    data.update(extra)
    return data


def _leftover(upload_dir):
    return list(upload_dir.iterdir()) if upload_dir.exists() else []


class TestApiAnalyze:

    def test_structured_report(self, http, upload_dir, monkeypatch):
        fake = _use_client(monkeypatch, FakeClient(StructuredOutput(json.loads(json.dumps(FULL_REPORT)))))

        r = http.post("/api/analyze", data=_pdf_upload(), content_type="multipart/form-data")

        assert r.status_code == 200
        assert r.get_json() == {"report": FULL_REPORT}
        assert fake.paths[0].suffix == ".pdf"
        assert _leftover(upload_dir) == []

    def test_text_with_embedded_json(self, http, upload_dir, monkeypatch):
        _use_client(monkeypatch, FakeClient(FreeTextOutput(SCENARIO_2_TEXT)))

        r = http.post("/api/analyze", data=_pdf_upload(), content_type="multipart/form-data")

        assert r.status_code == 200
        report = r.get_json()["report"]
        assert report["patient"]["name"] == "Jane Doe"
        assert report["abnormal_findings"] == []
        assert report["categorized_analysis"] == []

        html = app_module.render_report_html(report)
        assert "No abnormal findings detected" in html
        assert "<h4>" not in html

    def test_no_file(self, http, upload_dir, monkeypatch):
        def _must_not_store(*args, **kwargs):
            raise AssertionError("store() must not be called")

        monkeypatch.setattr(temp_store, "store", _must_not_store)
        _use_client(monkeypatch, FakeClient(StructuredOutput(FULL_REPORT)))

        r = http.post("/api/analyze", data={}, content_type="multipart/form-data")

        assert r.status_code == 400
        assert r.get_json() == {"error": "No file uploaded"}

    def test_empty_filename_is_no_file(self, http, upload_dir, monkeypatch):
        _use_client(monkeypatch, FakeClient(StructuredOutput(FULL_REPORT)))
        r = http.post(
            "/api/analyze",
            data={"file": (io.BytesIO(b""), "")},
            content_type="multipart/form-data",
        )
        assert r.status_code == 400

    def test_oversized_upload_is_client_error(self, http, upload_dir, monkeypatch):
        fake = _use_client(monkeypatch, FakeClient(StructuredOutput(FULL_REPORT)))
        monkeypatch.setitem(app_module.app.config, "MAX_CONTENT_LENGTH", 100)
        data = {"file": (io.BytesIO(b"%PDF-1.4 " + b"x" * 5000), "big.pdf")}

        r = http.post("/api/analyze", data=data, content_type="multipart/form-data")

        assert r.status_code == 413
        assert "error" in r.get_json()
        assert fake.prompts == []
        assert _leftover(upload_dir) == []

    def test_upstream_failure(self, http, upload_dir, monkeypatch):
        fake = _use_client(monkeypatch, FakeClient(error=RuntimeError("quota exceeded")))

        r = http.post("/api/analyze", data=_pdf_upload(), content_type="multipart/form-data")

        assert 500 <= r.status_code < 600
        assert r.get_json() == {"error": "quota exceeded"}
        assert not fake.paths[0].exists()
        assert _leftover(upload_dir) == []

    def test_invalid_model_output(self, http, upload_dir, monkeypatch):
        _use_client(monkeypatch, FakeClient(FreeTextOutput("I could not read this document.")))

        r = http.post("/api/analyze", data=_pdf_upload(), content_type="multipart/form-data")

        assert r.status_code == 500
        assert r.get_json() == {"error": "AI returned invalid JSON"}
        assert _leftover(upload_dir) == []
        assert engine.RAW_RESPONSE_PATH.read_text(encoding="utf-8") == "I could not read this document."

    def test_note_reaches_prompt(self, http, upload_dir, monkeypatch):
        fake = _use_client(monkeypatch, FakeClient(StructuredOutput(FULL_REPORT)))
        http.post("/api/analyze", data=_pdf_upload(note="Fasting sample"), content_type="multipart/form-data")
        assert fake.prompts[0].endswith("Fasting sample")

    def test_missing_extension_stored_as_pdf(self, http, upload_dir, monkeypatch):
        fake = _use_client(monkeypatch, FakeClient(StructuredOutput(FULL_REPORT)))
        http.post(
            "/api/analyze",
            data={"file": (io.BytesIO(b"%PDF"), "report")},
            content_type="multipart/form-data",
        )
        assert fake.paths[0].suffix == ".pdf"


class TestExport:

    def test_json_body(self, http, monkeypatch):
        seen = {}

        def _fake_export(report):
            seen["report"] = report
            return b"%PDF-fake", "lab_analysis_report.pdf"

        monkeypatch.setattr(engine, "generate_pdf_report", _fake_export)

        r = http.post("/api/export", json={"report": FULL_REPORT})

        assert r.status_code == 200
        assert r.mimetype == "application/pdf"
        assert r.data == b"%PDF-fake"
        assert "lab_analysis_report.pdf" in r.headers["Content-Disposition"]
        assert seen["report"] == FULL_REPORT

    def test_form_field(self, http, monkeypatch):
        monkeypatch.setattr(engine, "generate_pdf_report", lambda report: (b"%PDF-fake", "lab_analysis_report.pdf"))
        r = http.post("/api/export", data={"report": json.dumps(FULL_REPORT)})
        assert r.status_code == 200

    @pytest.mark.parametrize("kwargs", [
        {"json": {}},
        {"json": {"report": "nope"}},
        {"data": {"report": "{not json"}},
        {"data": {}},
    ])
    def test_missing_report(self, http, kwargs):
        r = http.post("/api/export", **kwargs)
        assert r.status_code == 400
        assert r.get_json() == {"error": "No report provided"}

    def test_render_failure(self, http, monkeypatch):
        def _boom(report):
            raise RuntimeError("chromium not installed")

        monkeypatch.setattr(engine, "generate_pdf_report", _boom)
        r = http.post("/api/export", json={"report": FULL_REPORT})
        assert r.status_code == 500
        assert r.get_json() == {"error": "chromium not installed"}


class TestHtmlFlow:

    def test_index(self, http):
        r = http.get("/")
        assert r.status_code == 200
        assert b'action="/generate"' in r.data

    def test_health(self, http):
        assert http.get("/health").get_json() == {"status": "ok"}

    def test_generate_shows_report(self, http, upload_dir, monkeypatch):
        _use_client(monkeypatch, FakeClient(StructuredOutput(json.loads(json.dumps(FULL_REPORT)))))

        r = http.post("/generate", data=_pdf_upload(), content_type="multipart/form-data")

        html = r.get_data(as_text=True)
        assert r.status_code == 200
        assert "John Smith" in html
        assert html.index("Haematology") < html.index("Iron Status")
        assert "Download PDF" in html
        assert _leftover(upload_dir) == []

    def test_generate_error_inline(self, http, upload_dir, monkeypatch):
        _use_client(monkeypatch, FakeClient(error=RuntimeError("network down")))

        r = http.post("/generate", data=_pdf_upload(note="keep me"), content_type="multipart/form-data")

        html = r.get_data(as_text=True)
        assert r.status_code == 502
        assert "network down" in html
        assert "keep me" in html
        assert "Patient Information" not in html

    def test_generate_oversized_upload(self, http, monkeypatch):
        monkeypatch.setitem(app_module.app.config, "MAX_CONTENT_LENGTH", 100)
        data = {"file": (io.BytesIO(b"x" * 5000), "big.pdf")}

        r = http.post("/generate", data=data, content_type="multipart/form-data")

        assert r.status_code == 413
        assert "Error:" in r.get_data(as_text=True)

    def test_generate_without_file(self, http):
        r = http.post("/generate", data={}, content_type="multipart/form-data")
        assert r.status_code == 400
        assert "No file uploaded" in r.get_data(as_text=True)
