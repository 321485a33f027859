# -*- coding: utf-8 -*-
"""Admin notifications over the Telegram Bot API."""

import asyncio
import logging

import requests

from . import config

log = logging.getLogger("sshpanel.notify")

REASON_TEXT = {"quota": "data quota used up", "expire": "account expired", "manual": "locked by admin"}


def send_telegram_message(text, token=None, chat_id=None, session=None):
    token = config.BOT_TOKEN if token is None else token
    chat_id = config.ADMIN_ID if chat_id is None else chat_id
    if not token or not chat_id:
        return False
    try:
        r = (session or requests).post(
            f"https://api.telegram.org/bot{token}/sendMessage",
            data={"chat_id": chat_id, "text": text, "parse_mode": "Markdown"},
            timeout=10,
        )
        return r.status_code == 200
    except requests.RequestException as e:
        log.warning("Failed to send telegram message: %s", e)
        return False


def format_lock_message(account, reason, usage_gb):
    return (
        f"🔒 *Account locked*\n\n"
        f"User `{account}` was locked: *{REASON_TEXT.get(reason, reason)}*.\n"
        f"📊 Usage: {usage_gb:.2f} GB"
    )


async def notify_lock(account, reason, usage_gb):
    await asyncio.to_thread(send_telegram_message, format_lock_message(account, reason, usage_gb))
