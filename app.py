# app.py
"""Flask application entry point for medviz.

Signed-in users paste medical report text, the findings extracted from it are
stored with the report, an illustrative image is requested when enabled, and
the result is drawn on a body diagram next to a findings list and the user's
history. The same operations are exposed as JSON under ``/api/``.
"""
import logging

from flask import (
    Flask,
    render_template,
    request,
    redirect,
    url_for,
    flash,
    jsonify,
    abort,
)
from flask_cors import CORS

from medviz import config, db
from medviz.auth import (
    UsernameTakenError,
    authenticate,
    current_user,
    login_required,
    login_user,
    logout_user,
    register,
)
from medviz.body_map import build_diagram
from medviz.extract import extract_findings, findings_from_dicts, findings_to_dicts, is_sentinel_only
from medviz.imagegen import ImageGenerationError, build_prompt, generate_image

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(message)s",
)

# --- app ---
app = Flask(__name__)
app.secret_key = config.SECRET_KEY
app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024  # form/JSON bodies only

# CORS
CORS(
    app,
    resources={r"/api/*": {"origins": config.CORS_ORIGINS}},
    supports_credentials="*" not in config.CORS_ORIGINS,
)

# Initialize the database and ensure tables exist
db.init_db()

EXAMPLE_REPORTS = [
    {
        "title": "Example 1: Fracture Report",
        "text": (
            "Patient presents with severe fracture in left femur. Moderate swelling observed. "
            "Right shoulder shows inflammation."
        ),
    },
    {
        "title": "Example 2: Pain Assessment",
        "text": "Mild pain in lower back. Moderate inflammation in right knee. Severe headache reported.",
    },
    {
        "title": "Example 3: Imaging Report",
        "text": (
            "Chest X-ray shows mild inflammation in left lung. Heart rate normal. "
            "Abdomen shows no abnormalities."
        ),
    },
]


class ReportTooLong(ValueError):
    pass


def _check_report_length(text: str) -> None:
    if len(text) > config.MAX_REPORT_CHARS:
        raise ReportTooLong(
            f"Report is too long ({len(text)} characters; limit is {config.MAX_REPORT_CHARS})."
        )


def _analyze_report(user_id: int, report_text: str) -> dict:
    """Extract, persist and (best-effort) illustrate one report.

    Database errors propagate; image generation problems are logged and the
    diagnosis is returned without an image.
    """
    findings = extract_findings(report_text)
    logging.info("extracted %d findings from %d chars", len(findings), len(report_text))

    diagnosis_id = db.create_diagnosis(user_id, report_text, findings)

    image_url = None
    if not is_sentinel_only(findings):
        try:
            image_url = generate_image(build_prompt(findings))
        except ImageGenerationError as exc:
            logging.warning("Image generation failed for diagnosis #%s: %s", diagnosis_id, exc)
        if image_url:
            try:
                db.update_diagnosis_image(diagnosis_id, image_url)
            except Exception:
                logging.exception("Failed to attach image to diagnosis #%s", diagnosis_id)
                image_url = None

    return {
        "diagnosisId": diagnosis_id,
        "findings": findings_to_dicts(findings),
        "imageUrl": image_url,
    }


def _owned_diagnosis_or_404(diagnosis_id: int) -> dict:
    record = db.get_diagnosis_by_id(diagnosis_id)
    user = current_user()
    if not record or not user or record["userId"] != user["id"]:
        abort(404)
    return record


def _safe_next(target: str) -> str:
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return url_for("diagnosis")


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------
@app.route("/", methods=["GET"])
def index():
    return render_template("index.html", user=current_user())


@app.route("/diagnosis", methods=["GET"])
@login_required
def diagnosis():
    user = current_user()
    history = []
    try:
        history = db.get_diagnoses_by_user_id(user["id"], limit=12)
    except Exception:
        logging.exception("Failed to fetch diagnosis history")
        flash("Could not load your previous diagnoses.", "error")
    return render_template(
        "diagnosis.html",
        user=user,
        examples=EXAMPLE_REPORTS,
        history=history,
        report_text=request.args.get("text", ""),
        max_chars=config.MAX_REPORT_CHARS,
    )


@app.route("/diagnosis", methods=["POST"])
@login_required
def analyze():
    report_text = request.form.get("report_text", "")
    if not report_text.strip():
        flash("Please enter a medical report.", "error")
        return redirect(url_for("diagnosis"))
    try:
        _check_report_length(report_text)
    except ReportTooLong as exc:
        flash(str(exc), "error")
        return redirect(url_for("diagnosis"))

    try:
        result = _analyze_report(current_user()["id"], report_text)
    except Exception:
        logging.exception("Failed to analyze report")
        flash("Failed to analyze report. Please try again.", "error")
        return redirect(url_for("diagnosis"))

    return redirect(url_for("diagnosis_detail", diagnosis_id=result["diagnosisId"]))


@app.route("/diagnosis/<int:diagnosis_id>")
@login_required
def diagnosis_detail(diagnosis_id: int):
    record = _owned_diagnosis_or_404(diagnosis_id)
    rows = db.get_findings_by_diagnosis_id(diagnosis_id) or record["findings"]
    findings = findings_from_dicts(rows)
    return render_template(
        "result.html",
        user=current_user(),
        record=record,
        findings=findings,
        diagram=build_diagram(findings),
    )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        user = authenticate(request.form.get("username", ""), request.form.get("password", ""))
        if user:
            login_user(user)
            flash("Logged in successfully.", "success")
            return redirect(_safe_next(request.form.get("next", "")))
        flash("Invalid username or password.", "error")
    return render_template("login.html", next=request.args.get("next", ""))


@app.route("/signup", methods=["GET", "POST"])
def signup():
    if request.method == "POST":
        try:
            register(
                request.form.get("username", ""),
                request.form.get("password", ""),
                request.form.get("name", ""),
                request.form.get("email", ""),
            )
        except ValueError as exc:
            flash(str(exc), "error")
        else:
            flash("Account created successfully. Please log in.", "success")
            return redirect(url_for("login"))
    return render_template("signup.html")


@app.route("/logout")
def logout():
    logout_user()
    flash("Logged out successfully.", "success")
    return redirect(url_for("login"))


# ---------------------------------------------------------------------------
# JSON API
# ---------------------------------------------------------------------------
@app.get("/health")
def health():
    return jsonify({"ok": True})


@app.get("/api/auth/me")
def api_me():
    return jsonify(current_user())


@app.post("/api/auth/logout")
def api_logout():
    logout_user()
    return jsonify({"success": True})


@app.post("/api/auth/login")
def api_login():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid input"}), 400
    user = authenticate(str(data.get("username") or ""), str(data.get("password") or ""))
    if not user:
        return jsonify({"error": "Invalid username or password"}), 401
    login_user(user)
    return jsonify(user)


@app.post("/api/auth/signup")
def api_signup():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid input"}), 400
    try:
        user_id = register(
            str(data.get("username") or ""),
            str(data.get("password") or ""),
            str(data.get("name") or ""),
            str(data.get("email") or ""),
        )
    except UsernameTakenError as exc:
        return jsonify({"error": str(exc)}), 409
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"id": user_id}), 201


@app.post("/api/diagnoses")
@login_required
def api_create_diagnosis():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid input"}), 400
    report_text = data.get("reportText")
    if not isinstance(report_text, str):
        return jsonify({"error": "reportText must be a string"}), 400
    try:
        _check_report_length(report_text)
    except ReportTooLong as exc:
        return jsonify({"error": str(exc)}), 413

    try:
        result = _analyze_report(current_user()["id"], report_text)
    except Exception as exc:
        logging.exception("Error in diagnosis.create")
        return jsonify({"error": f"Failed to analyze report: {exc}"}), 500
    return jsonify(result), 201


@app.get("/api/diagnoses")
@login_required
def api_list_diagnoses():
    return jsonify(db.get_diagnoses_by_user_id(current_user()["id"]))


@app.get("/api/diagnoses/<int:diagnosis_id>")
@login_required
def api_get_diagnosis(diagnosis_id: int):
    record = db.get_diagnosis_by_id(diagnosis_id)
    if not record or record["userId"] != current_user()["id"]:
        return jsonify({"error": "Diagnosis not found"}), 404
    record["findings"] = db.get_findings_by_diagnosis_id(diagnosis_id)
    return jsonify(record)


if __name__ == "__main__":
    # Use app.run only for local dev. For prod use a WSGI server.
    app.run(debug=True)
