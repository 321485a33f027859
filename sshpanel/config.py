# -*- coding: utf-8 -*-
"""
sshpanel.config
Settings for the traffic engine and the admin bot.
Every value can be overridden from the environment (SSHPANEL_*).
"""

import os
import logging


def _env(name, default):
    return os.environ.get(f"SSHPANEL_{name}", default)


def safe_int(v, default=0):
    try:
        return int(v)
    except Exception:
        try:
            return int(float(v))
        except Exception:
            return default


def safe_float(v, default=0.0):
    try:
        return float(v)
    except Exception:
        return default


# ---------- telemetry ----------
LISTEN_PORT = safe_int(_env("LISTEN_PORT", "22"), 22)
POLL_INTERVAL = safe_float(_env("POLL_INTERVAL", "2"), 2.0)
COMMAND_TIMEOUT = safe_float(_env("COMMAND_TIMEOUT", "5"), 5.0)

# ---------- geolocation ----------
GEO_URL = _env("GEO_URL", "http://ip-api.com/json/{ip}?fields=status,country,countryCode,city")
GEO_TIMEOUT = safe_float(_env("GEO_TIMEOUT", "1.5"), 1.5)
GEO_NEGATIVE_TTL = safe_float(_env("GEO_NEGATIVE_TTL", "60"), 60.0)

# ---------- accounts ----------
# identities that never get charged for traffic
SYSTEM_IDENTITIES = {"root", "nobody"} | {
    x.strip() for x in _env("SYSTEM_IDENTITIES", "").split(",") if x.strip()
}
LISTENER_IDENTITY = _env("LISTENER_IDENTITY", "sshd")
NOLOGIN_PATH = "/usr/sbin/nologin"

# ---------- storage ----------
STORE_BACKEND = _env("STORE", "sqlite")  # sqlite | limits
DB_PATH = _env("DB_PATH", "/var/lib/sshpanel/panel.sqlite")
LIMITS_DIR = _env("LIMITS_DIR", "/etc/sshmanager/limits")

# ---------- logging ----------
LOG_FILE = _env("LOG_FILE", "/var/log/sshpanel/engine.log")
LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"

# ---------- telegram ----------
BOT_TOKEN = _env("BOT_TOKEN", "")
ADMIN_ID = safe_int(_env("ADMIN_ID", "0"), 0)


def setup_logging(log_file=None, level=None):
    """Log to the file and to stderr (journald picks stderr up)."""
    log_file = LOG_FILE if log_file is None else log_file
    handlers = [logging.StreamHandler()]
    if log_file:
        try:
            if os.path.dirname(log_file):
                os.makedirs(os.path.dirname(log_file), exist_ok=True)
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as e:
            logging.getLogger("sshpanel").warning("log file %s unavailable: %s", log_file, e)
    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
