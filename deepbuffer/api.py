"""api.py – HTTP surface

Blueprint mounted under ``/api``.  Three groups of routes:

* **cron** – let an external scheduler (serverless deployments) drive the same
  pipeline the in-process scheduler drives; ``Authorization: Bearer
  <CRON_SECRET>``.
* **webhook** – Slack Events API callbacks, authenticated by Slack's request
  signature.
* **user** – the per-user reads and actions behind the UI.  The fronting auth
  layer forwards ``Authorization: Bearer <API_SECRET>`` and the signed-in
  user's id in ``X-User-Id``.
"""

from __future__ import annotations

import functools
import hmac
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, g, jsonify, request
from slack_sdk.signature import SignatureVerifier
from sqlalchemy.exc import SQLAlchemyError

from deepbuffer import limiter
from deepbuffer import logs as logging
from deepbuffer import urgency, verbs
from deepbuffer.inputs import slack, web

api_bp = Blueprint("api", __name__, url_prefix="/api")

SERVICE_NAME = "deepbuffer-backend"


def _pipeline():
    return current_app.extensions["deepbuffer"]


def _bearer_matches(config_key: str) -> bool:
    secret = current_app.config.get(config_key)
    if not secret:
        logging.log_text(f"{config_key} is not configured; rejecting {request.path}.", severity="WARNING")
        return False
    header = request.headers.get("Authorization", "")
    return hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


def _unauthorized():
    logging.log_text(
        f"Unauthorized call to {request.path} from {request.remote_addr or 'unknown'}",
        severity="WARNING",
    )
    return jsonify({"error": "Unauthorized"}), 401


def _db_error(exc: SQLAlchemyError):
    logging.log_text(f"DB error on {request.path}: {exc}", severity="ERROR")
    return jsonify({"error": str(exc.__class__.__name__)}), 500


def cron_route(view):
    @functools.wraps(view)
    def _wrapped(*args, **kwargs):
        if not _bearer_matches("CRON_SECRET"):
            return _unauthorized()
        return view(*args, **kwargs)

    return _wrapped


def user_route(view):
    """Require the API secret and a user id; the store must be configured."""

    @functools.wraps(view)
    def _wrapped(*args, **kwargs):
        if not _bearer_matches("API_SECRET"):
            return _unauthorized()
        user_id = request.headers.get("X-User-Id", "").strip()
        if not user_id:
            return jsonify({"error": "Missing X-User-Id header"}), 401
        if _pipeline().store is None:
            return jsonify({"error": "DB not configured"}), 500
        g.user_id = user_id
        try:
            return view(*args, **kwargs)
        except SQLAlchemyError as exc:
            return _db_error(exc)

    return _wrapped


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _item_json(item, keywords, vip_user_ids) -> Dict[str, Any]:
    meta = item.meta_data or {}
    return {
        "id": item.id,
        "source_type": item.source_type,
        "content": item.content,
        "meta_data": meta,
        "status": item.status,
        "user_id": item.user_id,
        "created_at": _isoformat(item.created_at),
        "is_urgent": urgency.is_urgent(item.content, meta.get("user"), keywords, vip_user_ids),
        "matched_keywords": urgency.matched_keywords(item.content, keywords),
    }


# ---------------------------------------------------------------------------
# Health & cron
# ---------------------------------------------------------------------------


@api_bp.route("/health", methods=["GET"])
@limiter.exempt
def health_check():
    """Light-weight liveness check."""
    return jsonify({"status": "ok", "service": SERVICE_NAME}), 200


@api_bp.route("/cron/summarize", methods=["GET", "POST"])
@cron_route
def cron_summarize():
    result = _pipeline().batch.run_batch()
    if result is None:
        return jsonify({"error": "Summarization failed"}), 500
    return jsonify(result), 200


@api_bp.route("/cron/retention", methods=["GET", "POST"])
@cron_route
def cron_retention():
    count = _pipeline().sweeper.sweep()
    if count is None:
        return jsonify({"error": "Retention failed"}), 500
    return jsonify({"success": True, "count": count}), 200


@api_bp.route("/messages/sync", methods=["POST"])
@cron_route
def sync_messages():
    _pipeline().poller.poll()
    return jsonify({"success": True}), 200


# ---------------------------------------------------------------------------
# Slack Events API
# ---------------------------------------------------------------------------


@api_bp.route("/webhook/slack", methods=["POST"])
@limiter.exempt
def slack_webhook():
    raw_body = request.get_data(as_text=True)
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        logging.log_text("[Webhook] Invalid JSON body.", severity="WARNING")
        return "Invalid JSON", 400

    if body.get("type") == "url_verification":
        return jsonify({"challenge": body.get("challenge")}), 200

    signing_secret = current_app.config.get("SLACK_SIGNING_SECRET")
    if not signing_secret or not SignatureVerifier(signing_secret).is_valid_request(
        raw_body, {key.lower(): value for key, value in request.headers.items()}
    ):
        logging.log_text("[Webhook] Invalid signature.", severity="WARNING")
        return "Invalid signature", 401

    pipeline = _pipeline()
    try:
        slack.ingest_event(pipeline.store, body, client_factory=pipeline.client_factory)
    except SQLAlchemyError as exc:
        logging.log_text(f"[Webhook] DB insert error: {exc}", severity="ERROR")
        return "Internal Server Error", 500
    return jsonify({"ok": True}), 200


# ---------------------------------------------------------------------------
# Per-user routes
# ---------------------------------------------------------------------------


@api_bp.route("/summaries/latest", methods=["GET"])
@user_route
def latest_summary():
    summary = _pipeline().store.latest_summary(g.user_id)
    if summary is None:
        return jsonify(None), 200
    return jsonify({
        "id": summary.id,
        "summary_text": summary.summary_text,
        "target_items": summary.target_items,
        "user_id": summary.user_id,
        "created_at": _isoformat(summary.created_at),
    }), 200


@api_bp.route("/items/pending/count", methods=["GET"])
@user_route
def pending_count():
    return jsonify({"count": _pipeline().store.count_pending(g.user_id)}), 200


@api_bp.route("/items", methods=["GET"])
@user_route
def list_items():
    store = _pipeline().store
    settings = store.get_user_settings(g.user_id)
    keywords = settings.alert_keywords if settings else None
    vip_user_ids = settings.vip_user_ids if settings else []

    items = store.list_recent_items(g.user_id, status=request.args.get("status"))
    return jsonify([_item_json(item, keywords, vip_user_ids) for item in items]), 200


@api_bp.route("/items/create", methods=["POST"])
@user_route
def create_item():
    content = _json_body().get("content")
    if not isinstance(content, str) or not content.strip():
        return jsonify({"error": "Missing content"}), 400

    store = _pipeline().store
    item_id = web.save_link(store, g.user_id, content)
    item = store.get_item(item_id)
    return jsonify({"success": True, "item": _item_json(item, None, [])}), 200


@api_bp.route("/ai/reply", methods=["POST"])
@user_route
def ai_reply():
    body = _json_body()
    original_message, tone = body.get("originalMessage"), body.get("tone")
    if not original_message or not tone:
        return jsonify({"error": "Missing originalMessage or tone"}), 400
    if tone not in verbs.REPLY_TONES:
        return jsonify({"error": f"Unknown tone: {tone}"}), 400

    draft = verbs.draft_reply(original_message, tone)
    if not draft:
        return jsonify({"error": "Failed to generate draft"}), 500
    return jsonify({"draft": draft}), 200


@api_bp.route("/ai/ask", methods=["POST"])
@user_route
def ai_ask():
    body = _json_body()
    summary_context, question = body.get("summaryContext"), body.get("question")
    if not summary_context or not question:
        return jsonify({"error": "Missing summaryContext or question"}), 400

    answer = verbs.answer_question(summary_context, question)
    if not answer:
        return jsonify({"error": "Failed to generate answer"}), 500
    return jsonify({"answer": answer}), 200


@api_bp.route("/slack/reply", methods=["POST"])
@user_route
def slack_reply():
    body = _json_body()
    channel_id, text = body.get("channelId"), body.get("text")
    if not channel_id or not text:
        return jsonify({"error": "Missing channelId or text"}), 400

    pipeline = _pipeline()
    sent = slack.send_message(
        pipeline.store,
        channel_id,
        text,
        thread_ts=body.get("threadTs"),
        team_id=body.get("teamId"),
        fallback_token=current_app.config.get("SLACK_USER_TOKEN"),
        client_factory=pipeline.client_factory,
    )
    if not sent:
        return jsonify({"error": "Failed to send message to Slack"}), 500
    return jsonify({"success": True}), 200


@api_bp.route("/slack/users", methods=["GET"])
@user_route
def slack_users():
    pipeline = _pipeline()
    users = slack.list_workspace_users(pipeline.store, g.user_id, client_factory=pipeline.client_factory)
    return jsonify({"users": users}), 200


@api_bp.route("/settings", methods=["GET"])
@user_route
def get_settings():
    settings = _pipeline().store.get_user_settings(g.user_id)
    if settings is None:
        return jsonify({"settings": None}), 200
    return jsonify({
        "settings": {
            "userId": settings.user_id,
            "alertKeywords": settings.alert_keywords or [],
            "vipUserIds": settings.vip_user_ids or [],
            "reportCustomInstructions": settings.report_custom_instructions,
        }
    }), 200


@api_bp.route("/settings", methods=["POST"])
@user_route
def update_settings():
    body = _json_body()
    _pipeline().store.upsert_user_settings(
        g.user_id,
        alert_keywords=body.get("alertKeywords"),
        vip_user_ids=body.get("vipUserIds"),
        report_custom_instructions=body.get("reportCustomInstructions"),
    )
    return jsonify({"success": True}), 200
