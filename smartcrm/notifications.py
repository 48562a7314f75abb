"""
smartcrm/notifications.py

In-app notifications with optional Telegram delivery.

IMPORTANT:
- Call these only AFTER the triggering mutation has committed.
- Fire-and-forget: a failed insert or a failed Telegram call is logged and swallowed,
  it never undoes or fails the business operation that triggered it.
"""

from __future__ import annotations

import logging

import requests
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import Notification, Profile
from .telegram import TelegramClient, TelegramError

logger = logging.getLogger(__name__)


def _send_telegram(profile: Profile, text: str) -> None:
    if not current_app.config.get("TELEGRAM_ENABLED") or not profile.telegram_chat_id:
        return
    try:
        client = TelegramClient.from_app_config(current_app.config)
        client.send_message(profile.telegram_chat_id, text)
    except (requests.RequestException, TelegramError, ValueError) as exc:
        logger.warning("Telegram delivery to profile %s failed: %s", profile.id, exc)


def notify(
    profile_id: int | None,
    message: str,
    link: str | None = None,
    *,
    telegram_text: str | None = None,
    actor_id: int | None = None,
) -> Notification | None:
    """
    Store a notification for one profile and push it to Telegram when configured.

    Nobody is notified about their own action (profile_id == actor_id).
    """
    if profile_id is None or profile_id == actor_id:
        return None

    try:
        profile = db.session.get(Profile, profile_id)
        if profile is None or not profile.is_active:
            return None
        note = Notification(profile_id=profile_id, content=message[:500], link=link, is_read=False)
        db.session.add(note)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Could not store notification for profile %s: %s", profile_id, exc)
        return None

    _send_telegram(profile, telegram_text or message)
    return note


def mark_read(profile_id: int, notification_id: int | None = None) -> int:
    """Mark one (or all) of a profile's notifications as read."""
    q = db.select(Notification).filter_by(profile_id=profile_id, is_read=False)
    if notification_id is not None:
        q = q.filter_by(id=notification_id)
    rows = db.session.execute(q).scalars().all()
    for row in rows:
        row.is_read = True
    db.session.commit()
    return len(rows)
