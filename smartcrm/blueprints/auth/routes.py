"""
Authentication Routes (JSON)

Provides:
- GET  /auth/csrf           CSRF token for the SPA (sent back as X-CSRFToken)
- POST /auth/login
- POST /auth/logout
- GET  /auth/me
- GET  /auth/notifications
- POST /auth/notifications/read

Rules:
- Only active profiles may log in.
- The session only identifies the actor; permissions are checked per endpoint.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ...errors import ValidationError
from ...extensions import db
from ...forms import LoginForm, validate_or_raise
from ...models import Notification, Profile
from ...notifications import mark_read
from ...security import api_login_required

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _profile_dict(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "username": profile.username,
        "full_name": profile.full_name,
        "role": profile.role,
        "can_manage": profile.can_manage(),
    }


@auth_bp.route("/csrf", methods=["GET"])
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


# ============================================================
# LOGIN / LOGOUT
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """Authenticate a profile; only active profiles may log in."""
    form = validate_or_raise(LoginForm())

    profile = Profile.query.filter_by(username=form.username.data.strip()).first()
    if not profile or not profile.check_password(form.password.data):
        return jsonify({"error": "Wrong username or password.", "type": "Unauthorized"}), 401
    if not profile.is_active:
        return jsonify({"error": "This account is disabled.", "type": "Forbidden"}), 403

    login_user(profile)
    return jsonify(_profile_dict(profile))


@auth_bp.route("/logout", methods=["POST"])
@api_login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@auth_bp.route("/me", methods=["GET"])
@api_login_required
def me():
    return jsonify(_profile_dict(current_user))


# ============================================================
# NOTIFICATIONS
# ============================================================

@auth_bp.route("/notifications", methods=["GET"])
@api_login_required
def notifications():
    unread_only = request.args.get("unread") == "1"
    q = db.select(Notification).filter_by(profile_id=current_user.id)
    if unread_only:
        q = q.filter_by(is_read=False)
    rows = db.session.execute(q.order_by(Notification.created_at.desc()).limit(100)).scalars().all()
    return jsonify(
        [
            {
                "id": n.id,
                "content": n.content,
                "link": n.link,
                "is_read": n.is_read,
                "created_at": n.created_at.isoformat() if n.created_at else None,
            }
            for n in rows
        ]
    )


@auth_bp.route("/notifications/read", methods=["POST"])
@api_login_required
def notifications_read():
    payload = request.get_json(silent=True) or {}
    notification_id = payload.get("id")
    if notification_id is not None and not str(notification_id).isdigit():
        raise ValidationError("Invalid notification id.")
    count = mark_read(current_user.id, int(notification_id) if notification_id is not None else None)
    return jsonify({"updated": count})
