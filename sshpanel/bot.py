# -*- coding: utf-8 -*-
"""
bot.py
Admin bot hosting the traffic engine.

The poll driver runs as a background task of the bot's event loop; the
report handlers read its live state. /lock and /unlock are the manual
override (the engine itself only ever locks).
"""

import asyncio
import logging

from telegram import Update
from telegram.ext import ApplicationBuilder, CommandHandler, ContextTypes

from . import config
from .engine import PollDriver, TelemetryEngine, create_engine
from .reporting import is_admin, register_reporting_handlers

log = logging.getLogger("sshpanel.bot")


async def _manual(update: Update, context: ContextTypes.DEFAULT_TYPE, lock: bool):
    if not is_admin(update):
        return await update.message.reply_text("⛔ Access denied")
    if not context.args:
        return await update.message.reply_text(f"Usage: /{'lock' if lock else 'unlock'} <username>")
    name = context.args[0].strip()
    engine: TelemetryEngine = context.application.bot_data["engine"]
    control = engine.enforcer.control

    if lock:
        ok = await control.lock(name)
        if ok:
            await control.kill_sessions(name)
            await asyncio.to_thread(engine.store.disable_account, name, "manual")
    else:
        ok = await control.unlock(name)
        if ok:
            await asyncio.to_thread(engine.store.enable_account, name)

    action = "locked" if lock else "unlocked"
    if ok:
        log.info("%s %s by admin", name, action)
        await update.message.reply_text(f"✅ `{name}` {action}.", parse_mode="Markdown")
    else:
        await update.message.reply_text(f"❌ Could not {action[:-2]} `{name}`, see logs.", parse_mode="Markdown")


async def lock_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _manual(update, context, lock=True)


async def unlock_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _manual(update, context, lock=False)


def run_bot(engine: TelemetryEngine = None):
    if not config.BOT_TOKEN:
        log.error("BOT_TOKEN not set. Export SSHPANEL_BOT_TOKEN or run with --headless")
        raise SystemExit("Set SSHPANEL_BOT_TOKEN")

    engine = engine or create_engine()
    driver = PollDriver(engine)

    async def post_init(application):
        application.bot_data["driver_task"] = asyncio.create_task(driver.run())

    async def post_shutdown(application):
        driver.stop()
        task = application.bot_data.get("driver_task")
        if task is not None:
            await task

    app = (
        ApplicationBuilder()
        .token(config.BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )
    app.bot_data["engine"] = engine
    app.bot_data["driver"] = driver

    register_reporting_handlers(app)
    app.add_handler(CommandHandler("lock", lock_cmd))
    app.add_handler(CommandHandler("unlock", unlock_cmd))

    app.run_polling()
