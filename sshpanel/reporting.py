# -*- coding: utf-8 -*-
"""
reporting.py
Admin reports over Telegram, read from the live state and the store.

  /live            every account: usage bar, live speed, connections
  /live <user>     one account with its connections and recent sessions
  /stats           host CPU / RAM / disk / uptime
Inline buttons: Prev / Next / Refresh.

python-telegram-bot v20+; the engine is expected in application.bot_data["engine"].
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import List, Tuple

import psutil
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import CallbackQueryHandler, CommandHandler, ContextTypes

from . import config
from .live_state import AccountView, join_accounts

PROGRESS_BAR_WIDTH = 20
PAGE_SIZE = 10


def gb_to_human(gb: float) -> str:
    if gb >= 1:
        return f"{gb:.2f} GB"
    mb = gb * 1024
    if mb >= 1:
        return f"{mb:.1f} MB"
    return f"{int(mb * 1024)} KB"


def make_progress_bar(pct: float, width: int = PROGRESS_BAR_WIDTH) -> str:
    pct = max(0.0, min(100.0, pct))
    filled = int(round((pct / 100.0) * width))
    return "▮" * filled + "▯" * (width - filled)


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    return f"{days}d, {rest // 3600}h"


def get_system_stats() -> str:
    cpu = psutil.cpu_percent(interval=1)
    ram = psutil.virtual_memory()
    disk = psutil.disk_usage("/")
    uptime = time.time() - psutil.boot_time()
    return (
        "📊 System status:\n\n"
        f"🧠 CPU: {cpu}%\n"
        f"💾 RAM: {ram.percent}% of {round(ram.total / 1024**3, 2)} GB\n"
        f"📀 Disk: {disk.percent}% of {round(disk.total / 1024**3, 2)} GB\n"
        f"⏱ Uptime: {format_uptime(uptime)}"
    )


def format_account_line(view: AccountView) -> str:
    if view.quota_gb > 0:
        pct = view.percent_used
        bar = make_progress_bar(pct)
        usage = f"{gb_to_human(view.used_gb)} / {gb_to_human(view.quota_gb)} ({pct:.1f}%)"
    else:
        bar = "—" * PROGRESS_BAR_WIDTH
        usage = f"{gb_to_human(view.used_gb)} / ♾ unlimited"
    exp_str = view.expires_at.strftime("%Y-%m-%d") if view.expires_at else "—"
    status = "✅" if view.enabled else "🔒"
    return (
        f"👤 `{view.name}` {status}\n"
        f"📊 Usage: {usage}\n"
        f"▒{bar}▒\n"
        f"⬆️ {view.upload_mbps:.2f} Mbps ⬇️ {view.download_mbps:.2f} Mbps | 🔌 {view.connection_count}\n"
        f"⏳ Expires: {exp_str}\n"
    )


def format_account_detail(view: AccountView, sessions: List[dict]) -> str:
    lines = [format_account_line(view)]
    if view.connections:
        lines.append("🔌 Live connections:")
        for c in view.connections:
            since = datetime.fromtimestamp(c.connected_at, timezone.utc).strftime("%H:%M:%S UTC")
            lines.append(
                f"• `{c.remote_address}` {c.geo.country_code} {c.geo.city} since {since}\n"
                f"  ⬆️ {c.upload_mbps:.2f} ⬇️ {c.download_mbps:.2f} Mbps, "
                f"{c.session_bytes / (1024 * 1024):.1f} MB this session"
            )
    else:
        lines.append("No live connections.")
    if sessions:
        lines.append("\n🕘 Recent sessions:")
        for s in sessions[:5]:
            total_mb = ((s.get("bytes_sent") or 0) + (s.get("bytes_received") or 0)) / (1024 * 1024)
            lines.append(f"• {s.get('ip')} ({s.get('country')}) {str(s.get('connected_at'))[:19]} "
                         f"{total_mb:.1f} MB")
    return "\n".join(lines)


def build_live_page(views: List[AccountView], page: int, totals: Tuple[float, float]
                    ) -> Tuple[str, InlineKeyboardMarkup]:
    total = len(views)
    total_pages = max(1, (total + PAGE_SIZE - 1) // PAGE_SIZE)
    page = max(0, min(page, total_pages - 1))
    chunk = views[page * PAGE_SIZE:(page + 1) * PAGE_SIZE]

    online = sum(1 for v in views if v.connection_count)
    header = (
        f"📡 Live traffic\nPage {page + 1} of {total_pages} | accounts: {total} | online: {online}\n"
        f"⬆️ {totals[0]:.2f} Mbps ⬇️ {totals[1]:.2f} Mbps\n\n"
    )
    body = "\n".join(format_account_line(v) for v in chunk) if chunk else "➖ No accounts."

    kb = [
        [
            InlineKeyboardButton("⬅️ Prev", callback_data=f"live:page={max(0, page - 1)}"),
            InlineKeyboardButton("➡️ Next", callback_data=f"live:page={min(total_pages - 1, page + 1)}"),
        ],
        [InlineKeyboardButton("🔄 Refresh", callback_data=f"live:page={page}")],
    ]
    return header + body, InlineKeyboardMarkup(kb)


def is_admin(update: Update) -> bool:
    user = update.effective_user
    return bool(user) and user.id == config.ADMIN_ID


async def _views(context: ContextTypes.DEFAULT_TYPE) -> List[AccountView]:
    engine = context.application.bot_data["engine"]
    snapshots = await asyncio.to_thread(engine.store.read_account_snapshots)
    # online accounts first, then by name
    views = join_accounts(snapshots, engine.live)
    views.sort(key=lambda v: (-v.connection_count, v.name))
    return views


async def live_entry(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not is_admin(update):
        return await update.message.reply_text("⛔ Access denied")
    engine = context.application.bot_data["engine"]
    views = await _views(context)

    if context.args:
        name = context.args[0].strip()
        view = next((v for v in views if v.name == name), None)
        if view is None:
            return await update.message.reply_text("❌ No such user.")
        sessions = await asyncio.to_thread(engine.store.recent_sessions, name, 5)
        return await update.message.reply_text(format_account_detail(view, sessions), parse_mode="Markdown")

    text, kb = build_live_page(views, 0, engine.live.total_mbps())
    await update.message.reply_text(text, reply_markup=kb, parse_mode="Markdown")


async def live_pagination_cb(update: Update, context: ContextTypes.DEFAULT_TYPE):
    q = update.callback_query
    await q.answer()
    if not is_admin(update):
        return
    try:
        page = int((q.data or "").split("=", 1)[1])
    except (IndexError, ValueError):
        page = 0
    engine = context.application.bot_data["engine"]
    text, kb = build_live_page(await _views(context), page, engine.live.total_mbps())
    await q.edit_message_text(text, reply_markup=kb, parse_mode="Markdown")


async def stats_entry(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not is_admin(update):
        return await update.message.reply_text("⛔ Access denied")
    text = await asyncio.to_thread(get_system_stats)
    await update.message.reply_text(text)


def register_reporting_handlers(application):
    application.add_handler(CommandHandler("live", live_entry))
    application.add_handler(CommandHandler("stats", stats_entry))
    application.add_handler(CallbackQueryHandler(live_pagination_cb, pattern=r"^live:page=\d+$"))
