# -*- coding: utf-8 -*-
"""
python -m sshpanel              admin bot + traffic engine
python -m sshpanel --headless   traffic engine only
python -m sshpanel --once       one cycle, live state printed as JSON
"""

import argparse
import asyncio
import json
import logging
import signal

from . import config
from .engine import PollDriver, create_engine, create_store
from .live_state import join_accounts, to_dict

log = logging.getLogger("sshpanel")


async def run_headless(engine):
    driver = PollDriver(engine)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, driver.stop)
        except NotImplementedError:
            pass
    await driver.run()


async def run_once(engine):
    report = await engine.run_cycle()
    snapshots = await asyncio.to_thread(engine.store.read_account_snapshots)
    views = join_accounts(snapshots, engine.live)
    print(json.dumps({
        "samples": report.samples,
        "attributed": report.attributed,
        "locked": report.locked,
        "users": [to_dict(v) for v in views],
    }, ensure_ascii=False, indent=2))


def main(argv=None):
    ap = argparse.ArgumentParser(prog="sshpanel", description="SSH tunnel account traffic engine")
    ap.add_argument("--headless", action="store_true", help="run the engine without the Telegram bot")
    ap.add_argument("--once", action="store_true", help="run a single cycle and print the live state")
    ap.add_argument("--store", choices=("sqlite", "limits"), default=config.STORE_BACKEND)
    ap.add_argument("--log-file", default=config.LOG_FILE)
    args = ap.parse_args(argv)

    config.setup_logging(args.log_file)
    log.info("starting: store=%s port=%s", args.store, config.LISTEN_PORT)
    engine = create_engine(store=create_store(args.store))

    if args.once:
        asyncio.run(run_once(engine))
    elif args.headless:
        asyncio.run(run_headless(engine))
    else:
        from .bot import run_bot
        run_bot(engine)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
