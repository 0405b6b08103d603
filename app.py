import io
import json
import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, render_template_string, request, send_file
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import engine
from labreport.errors import LabReportError, NoFileProvided
from labreport.renderer import render_report_html


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler()],
)
log = logging.getLogger(__name__)

PORT = int(os.getenv("PORT", "3001"))
API_BASE = os.getenv("API_BASE", "").rstrip("/")  # префикс для форм, если API на другом хосте
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "20"))

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_MB * 1024 * 1024
CORS(app, resources={r"/api/*": {"origins": CORS_ORIGINS}})

FORM_HTML = """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>AI Lab Report Analyzer</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    body{font-family:Arial, sans-serif; max-width:900px; margin:24px auto; padding:0 12px;}
    label{display:block; margin:12px 0 6px; font-weight:600;}
    input, textarea{width:100%; padding:10px; font-size:16px; box-sizing:border-box;}
    textarea{min-height:90px;}
    .btn{margin-top:16px; padding:14px 16px; font-size:16px; cursor:pointer; width:100%;}
    .btn[disabled]{opacity:0.6; cursor:not-allowed;}
    .hint{color:#666; font-size:14px; margin-top:6px; line-height:1.35;}
    .err{background:#fff3f3; border:1px solid #ffb3b3; padding:10px; border-radius:8px; margin:12px 0;}
    .card{background:#f7f7f9; padding:14px; border-radius:10px; margin-bottom:16px;}

    .loader{
      display:none;
      margin-top:16px;
      text-align:center;
      padding:14px;
      border-radius:10px;
      background:#eef2ff;
      color:#1e3a8a;
      font-size:15px;
    }
    .spinner{
      width:28px;
      height:28px;
      border:4px solid #c7d2fe;
      border-top:4px solid #1e3a8a;
      border-radius:50%;
      animation: spin 1s linear infinite;
      margin:0 auto 10px;
    }
    @keyframes spin { from { transform: rotate(0deg); } to { transform: rotate(360deg); } }
  </style>
</head>
<body>

  <h2>AI Lab Report Analyzer</h2>

  <div class="card">
    <div class="hint">
      Upload a blood test PDF and let AI analyze it.
      The report is for clinical support only and is not a substitute for physician judgment.
    </div>
  </div>

  {% if error %}
    <div class="err"><strong>Error:</strong> {{ error }}</div>
  {% endif %}

  <form method="post" action="{{ api_base }}/generate" enctype="multipart/form-data" onsubmit="startLoading()">
    <label>Blood test report (PDF)</label>
    <input type="file" name="file" accept="application/pdf">

    <label>Notes (optional)</label>
    <textarea name="note" placeholder="Anything the analysis should take into account...">{{ note or '' }}</textarea>
    <div class="hint">Analysis usually takes 10–60 seconds.</div>

    <button id="submitBtn" class="btn" type="submit">Analyze</button>

    <div id="loader" class="loader">
      <div class="spinner"></div>
      Analyzing the report…<br>
      Please wait.
    </div>
  </form>

  <script>
    function startLoading(){
      document.getElementById("submitBtn").disabled = true;
      document.getElementById("loader").style.display = "block";
    }
  </script>

</body>
</html>
"""


def _uploaded_file():
    up = request.files.get("file")
    if not up or not up.filename:
        raise NoFileProvided()
    return up


def _report_from_request() -> Optional[Dict[str, Any]]:
    if request.is_json:
        body = request.get_json(silent=True)
        report = body.get("report") if isinstance(body, dict) else None
    else:
        try:
            report = json.loads(request.form.get("report", ""))
        except ValueError:
            return None
    return report if isinstance(report, dict) else None


@app.get("/health")
def health():
    return jsonify(status="ok")


@app.get("/")
def index():
    return render_template_string(FORM_HTML, error=None, note="", api_base=API_BASE)


@app.post("/api/analyze")
def api_analyze():
    try:
        up = _uploaded_file()
        report = engine.analyze_upload(up.stream, up.filename, note=request.form.get("note"))
    except LabReportError as e:
        log.warning("Analysis failed (%s): %s", type(e).__name__, e.message)
        return jsonify(error=e.message), e.status_code
    except HTTPException as e:
        log.warning("Rejected request: %s", e.description)
        return jsonify(error=e.description), e.code
    except Exception as e:
        log.exception("Analysis failed")
        return jsonify(error=str(e)), 500
    return jsonify(report=report)


@app.post("/generate")
def generate():
    note = ""
    try:
        note = request.form.get("note", "")
        up = _uploaded_file()
        report = engine.analyze_upload(up.stream, up.filename, note=note)
    except HTTPException as e:
        log.warning("Rejected request: %s", e.description)
        return render_template_string(FORM_HTML, error=e.description, note=note, api_base=API_BASE), e.code
    except Exception as e:
        status = e.status_code if isinstance(e, LabReportError) else 500
        if status >= 500:
            log.exception("Analysis failed")
        return render_template_string(FORM_HTML, error=str(e), note=note, api_base=API_BASE), status

    return render_report_html(
        report,
        template_name="report_page.html",
        report_json=json.dumps(report, ensure_ascii=False),
        api_base=API_BASE,
    )


@app.post("/api/export")
def api_export():
    report = _report_from_request()
    if report is None:
        return jsonify(error="No report provided"), 400

    try:
        pdf_bytes, download_name = engine.generate_pdf_report(report)
    except Exception as e:
        log.exception("PDF export failed")
        return jsonify(error=str(e)), 500

    return send_file(
        io.BytesIO(pdf_bytes),
        as_attachment=True,
        download_name=download_name,
        mimetype="application/pdf",
    )


if __name__ == "__main__":
    log.info("Server listening on http://localhost:%d", PORT)
    app.run(host=os.getenv("HOST", "127.0.0.1"), port=PORT, debug=os.getenv("FLASK_DEBUG") == "1")
