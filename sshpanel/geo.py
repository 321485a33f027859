# -*- coding: utf-8 -*-
"""
geo.py
Remote address -> country/city via an ip-api.com style JSON endpoint.

Answers are cached: good ones for the life of the process, failures for
GEO_NEGATIVE_TTL seconds so a dead endpoint is not hammered every cycle.
"""

import asyncio
import ipaddress
import logging
import time
from typing import Callable, Dict, Optional, Tuple

import requests

from . import config
from .models import LOCAL_GEO, UNKNOWN_GEO, GeoInfo

log = logging.getLogger("sshpanel.geo")


def is_local_address(addr: str) -> bool:
    try:
        ip = ipaddress.ip_address(addr)
    except ValueError:
        return False
    if getattr(ip, "ipv4_mapped", None):
        ip = ip.ipv4_mapped
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified


class IpLocator:
    def __init__(self, session: Optional[requests.Session] = None,
                 url: str = config.GEO_URL,
                 timeout: float = config.GEO_TIMEOUT,
                 negative_ttl: float = config.GEO_NEGATIVE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.session = session or requests.Session()
        self.url = url
        self.timeout = timeout
        self.negative_ttl = negative_ttl
        self.clock = clock
        # address -> (info, expires_at); expires_at None = keep forever
        self._cache: Dict[str, Tuple[GeoInfo, Optional[float]]] = {}
        self._inflight: Dict[str, "asyncio.Future[GeoInfo]"] = {}

    def cached(self, addr: str) -> Optional[GeoInfo]:
        hit = self._cache.get(addr)
        if hit is None:
            return None
        info, expires_at = hit
        if expires_at is not None and self.clock() >= expires_at:
            del self._cache[addr]
            return None
        return info

    def _fetch(self, addr: str) -> GeoInfo:
        try:
            r = self.session.get(self.url.format(ip=addr), timeout=self.timeout)
            if r.status_code != 200:
                log.debug("geo %s: http %s", addr, r.status_code)
                return UNKNOWN_GEO
            j = r.json() or {}
        except (requests.RequestException, ValueError) as e:
            log.debug("geo %s failed: %s", addr, e)
            return UNKNOWN_GEO
        if j.get("status") != "success":
            return UNKNOWN_GEO
        return GeoInfo(
            j.get("country") or UNKNOWN_GEO.country,
            j.get("countryCode") or UNKNOWN_GEO.country_code,
            j.get("city") or UNKNOWN_GEO.city,
        )

    def _store(self, addr: str, info: GeoInfo):
        if info == UNKNOWN_GEO:
            self._cache[addr] = (info, self.clock() + self.negative_ttl)
        else:
            self._cache[addr] = (info, None)

    async def locate(self, addr: str) -> GeoInfo:
        if not addr:
            return UNKNOWN_GEO
        if is_local_address(addr):
            return LOCAL_GEO
        info = self.cached(addr)
        if info is not None:
            return info

        pending = self._inflight.get(addr)
        if pending is not None:
            return await pending

        fut = asyncio.get_running_loop().create_future()
        self._inflight[addr] = fut
        try:
            info = await asyncio.to_thread(self._fetch, addr)
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception:
            log.exception("geo lookup crashed for %s", addr)
            info = UNKNOWN_GEO
        finally:
            self._inflight.pop(addr, None)
        self._store(addr, info)
        fut.set_result(info)
        return info
