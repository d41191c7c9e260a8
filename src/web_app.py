"""
Flask application: public scan endpoints, Basic-Auth protected office views.

Public (no login, reached from the QR code on a pallet label):
    GET  /health
    GET  /scan/<task_id>?sig=...       "Ware ausbuchen?" prompt
    POST /scan/<task_id>?sig=...       Ja/Nein answer
    GET  /complete/<task_id>?sig=...   legacy labels, closes without prompt

Office (Basic Auth):
    GET  /                 -> /av
    GET  /labels           label form
    POST /make-labels      PDF download
    GET  /av               load list creation
    GET  /av/list/<id>     driver view
    GET  /api/av/labels
    POST /api/av/create
    GET  /api/av/list/<id>

Every PalletLabelsError raised by a route ends up in one error handler which
maps it to its HTTP status: JSON ``{"error": ...}`` below /api/, a German
message page everywhere else.
"""

import hmac
import io
import uuid
from typing import Optional
from urllib.parse import quote

from flask import Flask, Response, g, jsonify, redirect, render_template, request, send_file, url_for
from werkzeug.exceptions import HTTPException

from app_config import AppConfig
from completion_store import CompletionStore, create_completion_store, parse_completed_at
from completion_workflow import CompletionOutcome, CompletionWorkflow, WorkflowState
from exceptions import AuthenticationRequiredError, PalletLabelsError, ValidationError
from label_renderer import LabelRenderer, create_pallet_labels, format_created
from list_sorter import sort_labels
from load_list_store import LoadListStore
from logger import clear_logging_context, get_logger, set_request_context
from qr_codes import qr_data_url
from signature import SignatureVerifier
from task_gateway import TaskGateway

logger = get_logger(__name__)

TODOIST_TASK_URL = "https://todoist.com/showTask?id={task_id}"

ERROR_HEADINGS = {
    400: "Ungültige Eingabe",
    401: "Anmeldung erforderlich",
    403: "Zugriff verweigert",
    404: "Ladeliste nicht gefunden",
    502: "Ausbuchung fehlgeschlagen",
}


def priority_display(priority: int) -> int:
    """Todoist priority 4 (highest) is shown as "Prio 1"."""
    return 5 - (priority or 1)


def create_app(
    config: AppConfig,
    gateway: Optional[TaskGateway] = None,
    store: Optional[CompletionStore] = None,
    verifier: Optional[SignatureVerifier] = None,
    workflow: Optional[CompletionWorkflow] = None,
    load_lists: Optional[LoadListStore] = None,
    renderer: Optional[LabelRenderer] = None,
) -> Flask:
    """
    Build the Flask app.

    Collaborators not passed in are built from ``config``; tests pass fakes.
    """
    # Stores define __len__, so an empty one is falsy: test for None only
    if gateway is None:
        gateway = TaskGateway.from_config(config)
    if store is None:
        store = create_completion_store(config)
    if verifier is None:
        verifier = SignatureVerifier(config.signing_secret)
    if workflow is None:
        workflow = CompletionWorkflow(verifier, store, gateway)
    if load_lists is None:
        load_lists = LoadListStore()
    if renderer is None:
        renderer = LabelRenderer(config.logo_path, config.time_zone)

    app = Flask(__name__)
    app.config["PALLET_LABELS"] = config

    def display_time(completed_at: Optional[str]) -> str:
        if not completed_at:
            return ""
        return format_created(parse_completed_at(completed_at), config.time_zone)

    app.jinja_env.filters["display_time"] = display_time
    app.jinja_env.filters["prio"] = priority_display

    # ------------------------------------------------------------------
    # Request hooks
    # ------------------------------------------------------------------

    def is_public(path: str) -> bool:
        return any(path == prefix or path.startswith(prefix.rstrip("/") + "/")
                   for prefix in config.public_paths)

    def credentials_ok() -> bool:
        auth = request.authorization
        if auth is None or (auth.type or "").lower() != "basic":
            return False
        user_ok = hmac.compare_digest((auth.username or "").encode("utf-8"),
                                      config.admin_user.encode("utf-8"))
        pass_ok = hmac.compare_digest((auth.password or "").encode("utf-8"),
                                      config.admin_pass.encode("utf-8"))
        return user_ok and pass_ok

    @app.before_request
    def start_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        set_request_context(g.request_id)

        if is_public(request.path):
            return None
        if not credentials_ok():
            raise AuthenticationRequiredError("Authentifizierung erforderlich.",
                                              realm=config.auth_realm)
        return None

    @app.after_request
    def tag_response(response: Response) -> Response:
        request_id = g.get("request_id")
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response

    @app.teardown_request
    def end_request(_error=None):
        clear_logging_context()

    # ------------------------------------------------------------------
    # Error boundary
    # ------------------------------------------------------------------

    @app.errorhandler(PalletLabelsError)
    def handle_app_error(error: PalletLabelsError):
        status = error.http_status
        message = error.get_display_message()
        if status >= 500:
            logger.error(f"{type(error).__name__} on {request.method} {request.path}: {error}")
        else:
            logger.warning(f"{type(error).__name__} on {request.method} {request.path}: {error}")

        if request.path.startswith("/api/"):
            response = jsonify({"error": message})
            response.status_code = status
        else:
            page = render_template("message.html",
                                   heading=ERROR_HEADINGS.get(status, "Fehler"),
                                   message=message)
            response = Response(page, status=status, mimetype="text/html")

        if isinstance(error, AuthenticationRequiredError):
            response.headers["WWW-Authenticate"] = f'Basic realm="{error.realm}"'
        return response

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error

        logger.exception(f"Unhandled error on {request.method} {request.path}: {error}")
        if request.path.startswith("/api/"):
            return jsonify({"error": "Interner Fehler."}), 500
        page = render_template("message.html", heading="Fehler", message="Interner Fehler.")
        return Response(page, status=500, mimetype="text/html")

    # ------------------------------------------------------------------
    # Public routes
    # ------------------------------------------------------------------

    def render_outcome(outcome: CompletionOutcome):
        if outcome.state in (WorkflowState.REJECTED, WorkflowState.CLOSE_FAILED):
            raise outcome.error
        return render_template("scan_result.html", outcome=outcome, states=WorkflowState)

    @app.route("/health")
    def health():
        return Response("OK", mimetype="text/plain")

    @app.route("/scan/<task_id>", methods=["GET"])
    def scan(task_id):
        sig = request.args.get("sig")
        outcome = workflow.inspect(task_id, sig)
        if outcome.state is not WorkflowState.AWAITING_CONFIRMATION:
            return render_outcome(outcome)

        action = url_for("scan_answer", task_id=task_id, sig=sig)
        return render_template("scan_confirm.html", action=action,
                               label=request.args.get("label", ""))

    @app.route("/scan/<task_id>", methods=["POST"])
    def scan_answer(task_id):
        sig = request.args.get("sig") or request.form.get("sig")
        if request.form.get("answer") != "yes":
            return render_outcome(workflow.decline(task_id, sig))

        label = (request.form.get("label") or request.args.get("label") or "").strip() or None
        return render_outcome(workflow.complete(task_id, sig, label=label))

    @app.route("/complete/<task_id>")
    def complete_legacy(task_id):
        outcome = workflow.complete(task_id, request.args.get("sig"), include_remaining=False)
        if outcome.closed and config.legacy_redirect:
            return redirect(TODOIST_TASK_URL.format(task_id=quote(task_id, safe="")))
        return render_outcome(outcome)

    # ------------------------------------------------------------------
    # Office routes (Basic Auth)
    # ------------------------------------------------------------------

    @app.route("/")
    def index():
        return redirect(url_for("av_page"))

    @app.route("/labels")
    def label_form():
        return render_template("label_form.html", max_pallets=config.max_pallets)

    @app.route("/make-labels", methods=["POST"])
    def make_labels():
        filename, pdf_bytes = create_pallet_labels(
            gateway, verifier, renderer, config.public_base_url,
            project=request.form.get("project", ""),
            drawing=request.form.get("drawing", ""),
            count=request.form.get("count"),
            packer=request.form.get("packer", ""),
            max_pallets=config.max_pallets,
        )
        return send_file(io.BytesIO(pdf_bytes), mimetype="application/pdf",
                         as_attachment=True, download_name=filename)

    @app.route("/av")
    def av_page():
        return render_template("av.html")

    @app.route("/av/list/<list_id>")
    def av_list_page(list_id):
        snapshot = load_lists.get(list_id)
        return render_template("load_list.html", snapshot=snapshot)

    @app.route("/api/av/labels")
    def api_labels():
        tasks = gateway.list_project_tasks()
        labels = sort_labels(name for task in tasks for name in task.labels)
        return jsonify({"labels": labels})

    @app.route("/api/av/create", methods=["POST"])
    def api_create_list():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        label = str(data.get("label") or "").strip()
        if not label:
            raise ValidationError("label fehlt", field="label")

        tasks = [task for task in gateway.list_project_tasks() if task.has_label(label)]
        snapshot = load_lists.create(label, tasks)
        url = f"{config.public_base_url}/av/list/{snapshot.id}"

        return jsonify({
            "id": snapshot.id,
            "url": url,
            "qrDataUrl": qr_data_url(url, width=300, border=1),
            "count": len(snapshot.items),
        })

    @app.route("/api/av/list/<list_id>")
    def api_get_list(list_id):
        return jsonify(load_lists.get(list_id).to_dict())

    return app
