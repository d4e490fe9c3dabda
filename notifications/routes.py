# notifications/routes.py
import click
from flask import Blueprint, jsonify, request
from extensions import db
from notifications.mailer import drain_mail_queue
from notifications.models import FcmToken

notifications_bp = Blueprint("notifications", __name__, url_prefix="/notifications", cli_group="mail")


# ================= PUSH TOKENS =================
@notifications_bp.route("/tokens/<path:token>", methods=["PUT"])
def register_token(token):
    uid = ((request.get_json(silent=True) or {}).get("uid") or "").strip()
    if not uid:
        return jsonify({"status": "error", "message": "uid is required"}), 400

    # same token again just moves it to the new uid
    row = db.session.get(FcmToken, token)
    if row is None:
        row = FcmToken(token=token, uid=uid)
        db.session.add(row)
    else:
        row.uid = uid
    db.session.commit()
    return jsonify({"status": "success", "token": token, "uid": uid})


@notifications_bp.route("/tokens/<path:token>", methods=["DELETE"])
def forget_token(token):
    row = db.session.get(FcmToken, token)
    if row is not None:
        db.session.delete(row)
        db.session.commit()
    return jsonify({"status": "success", "token": token})


# ================= MAIL WORKER =================
@notifications_bp.cli.command("drain")
@click.option("--limit", type=int, default=None, help="Send at most this many queued emails.")
def drain_command(limit):
    """Send queued notification emails."""
    sent, failed = drain_mail_queue(limit=limit)
    click.echo(f"Sent {sent} email(s), {failed} failed.")
