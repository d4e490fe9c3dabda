# grievances/routes.py
from flask import Blueprint, Response, current_app, json, jsonify, request, stream_with_context
from extensions import db
from grievances.live import LiveQueryError, fetch_grievances
from grievances.models import Grievance, CATEGORIES, SEVERITIES, STATUSES

grievances_bp = Blueprint("grievances", __name__, url_prefix="/grievances")
admin_bp = Blueprint("admin", __name__, url_prefix="/admin/grievances")

KEEPALIVE_SECONDS = 15


def _error(message, code=400):
    return jsonify({"status": "error", "message": message}), code


def filter_grievances(items, term="", status="", severity=""):
    """Admin dashboard filtering: free text over title+details, exact status and severity."""
    term = (term or "").strip().lower()
    out = []
    for g in items:
        text = f"{g.get('title') or ''} {g.get('details') or ''}".lower()
        if term and term not in text:
            continue
        if status and g.get("status") != status:
            continue
        if severity and g.get("severity") != severity:
            continue
        out.append(g)
    return out


def summarize(items):
    return {
        "total": len(items),
        "working": sum(1 for g in items if g.get("status") == "Working"),
        "resolved": sum(1 for g in items if g.get("status") == "Resolved"),
    }


def _event_stream(subscription, keepalive=KEEPALIVE_SECONDS):
    # the periodic comment is what surfaces a gone client as GeneratorExit
    try:
        while subscription.active:
            snapshot = subscription.next_snapshot(timeout=keepalive)
            if snapshot is not None:
                yield f"event: snapshot\ndata: {json.dumps(snapshot)}\n\n"
            elif subscription.active:
                yield ": keep-alive\n\n"
    except LiveQueryError as e:
        yield f"event: error\ndata: {json.dumps({'message': str(e)})}\n\n"
    finally:
        subscription.unsubscribe()


def _stream(owner_id=None):
    subscription = current_app.extensions["live_queries"].subscribe(owner_id)
    return Response(
        stream_with_context(_event_stream(subscription)),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


# ================= FILE NEW (User) =================
@grievances_bp.route("/", methods=["POST"])
def file_grievance():
    data = request.get_json(silent=True) or {}
    client_id = (data.get("client_id") or "").strip()
    title = (data.get("title") or "").strip()
    if not client_id:
        return _error("client_id is required")
    if not title:
        return _error("Please add a title")

    severity = data.get("severity") or "Medium"
    if severity not in SEVERITIES:
        return _error(f"severity must be one of {', '.join(SEVERITIES)}")
    category = data.get("category") or "Attention"
    if category not in CATEGORIES:
        category = "Other"

    g = Grievance(
        title=title,
        details=(data.get("details") or "").strip(),
        category=category,
        severity=severity,
        status="Filed",
        owner_id=client_id,
        updates=[],
    )
    db.session.add(g)
    db.session.commit()
    return jsonify(g.to_dict()), 201


# ================= USER VIEW =================
@grievances_bp.route("/mine")
def my_grievances():
    client_id = (request.args.get("client_id") or "").strip()
    if not client_id:
        return _error("client_id is required")
    try:
        items = fetch_grievances(client_id)
    except LiveQueryError as e:
        return _error(str(e), 500)
    return jsonify({
        "grievances": items,
        "stats": {
            "total": len(items),
            "resolved": sum(1 for g in items if g["status"] == "Resolved"),
        },
    })


@grievances_bp.route("/mine/stream")
def my_grievances_stream():
    client_id = (request.args.get("client_id") or "").strip()
    if not client_id:
        return _error("client_id is required")
    return _stream(client_id)


# ================= VIEW ALL (Admin) =================
@admin_bp.route("/")
def list_grievances():
    try:
        items = fetch_grievances()
    except LiveQueryError as e:
        return _error(str(e), 500)
    filtered = filter_grievances(
        items,
        term=request.args.get("q", ""),
        status=request.args.get("status", ""),
        severity=request.args.get("severity", ""),
    )
    return jsonify({"grievances": filtered, "summary": summarize(filtered)})


@admin_bp.route("/stream")
def list_grievances_stream():
    return _stream(None)


# ================= RESPOND (Admin) =================
@admin_bp.route("/<int:id>/status", methods=["POST"])
def set_status(id):
    grievance = db.get_or_404(Grievance, id)
    new_status = (request.get_json(silent=True) or {}).get("status")
    if new_status not in STATUSES:
        return _error(f"status must be one of {', '.join(STATUSES)}")

    grievance.status = new_status
    db.session.commit()
    return jsonify(grievance.to_dict())


@admin_bp.route("/<int:id>/updates", methods=["POST"])
def add_update(id):
    grievance = db.get_or_404(Grievance, id)
    text = ((request.get_json(silent=True) or {}).get("text") or "").strip()
    if not text:
        return _error("Update text is required")

    grievance.append_update(text)
    db.session.commit()
    return jsonify(grievance.to_dict()), 201


@admin_bp.route("/<int:id>", methods=["DELETE"])
def delete_grievance(id):
    grievance = db.get_or_404(Grievance, id)
    db.session.delete(grievance)
    db.session.commit()
    return jsonify({"status": "success", "id": id})
