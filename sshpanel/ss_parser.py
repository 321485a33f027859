# -*- coding: utf-8 -*-
"""
ss_parser.py
Turns `ss -tinp` output into ConnectionSample objects.

ss prints every socket as a header line followed by one or more indented
tcp_info lines:

    0  0  10.0.0.5:22  203.0.113.9:51234  users:(("sshd",pid=1234,fd=4))
         cubic wscale:7,7 rto:204 ... bytes_sent:5000 bytes_acked:5001 bytes_received:200 ...

The layout moves around between iproute2 versions (state column present or
not, header row present or not, counters omitted while zero), so lines that
do not look like either kind are ignored instead of failing the capture.
"""

import re
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from .models import ConnectionSample

ADDR_TOKEN = re.compile(r"^(\[[0-9A-Fa-f:.%\w]+\]|[0-9A-Fa-f:.%\w*-]+):(\d+|\*)$")
PID = re.compile(r"\bpid=(\d+)")
METRIC_KEY = re.compile(r"\b(?:bytes_sent|bytes_acked|bytes_received|segs_out|segs_in):\d")
BYTES_SENT = re.compile(r"\bbytes_sent:(\d+)")
BYTES_RECEIVED = re.compile(r"\bbytes_received:(\d+)")


class ParserState(Enum):
    AWAITING_RECORD_HEADER = "awaiting_record_header"
    AWAITING_METRICS = "awaiting_metrics"


def normalize_address(addr: str) -> str:
    addr = addr.strip()
    if addr.startswith("[") and addr.endswith("]"):
        addr = addr[1:-1]
    addr = addr.split("%", 1)[0]
    if addr.lower().startswith("::ffff:") and "." in addr:
        addr = addr[7:]
    return addr


def parse_header(line: str) -> Optional[Tuple[Tuple[int, ...], str]]:
    """(pids, peer address) of a socket header line, or None."""
    addrs = []
    for tok in line.split():
        if tok.startswith("users:"):
            break
        m = ADDR_TOKEN.match(tok)
        # "rto:204" and friends are tcp_info keys, not addresses
        if m and (m.group(1) == "*" or "." in m.group(1) or ":" in m.group(1)):
            addrs.append(m.group(1))
    if len(addrs) < 2:
        return None
    pids = tuple(int(p) for p in PID.findall(line))
    return pids, normalize_address(addrs[1])


def is_metrics_line(line: str) -> bool:
    return bool(METRIC_KEY.search(line))


class SocketSampleParser:
    """Two-state machine: header line, then the metrics that belong to it."""

    def __init__(self):
        self._reset()

    def _reset(self):
        self.state = ParserState.AWAITING_RECORD_HEADER
        self._pids: Tuple[int, ...] = ()
        self._remote = ""
        self._sent = 0
        self._received = 0
        self._has_metrics = False

    def _flush(self, observed_at: float) -> Optional[ConnectionSample]:
        sample = None
        if self.state is ParserState.AWAITING_METRICS and self._has_metrics:
            sample = ConnectionSample(self._pids, self._remote, self._sent, self._received, observed_at)
        self._reset()
        return sample

    def feed(self, line: str, observed_at: float) -> Optional[ConnectionSample]:
        """Consume one line; returns the record it completed, if any."""
        if not line.strip():
            return None

        if is_metrics_line(line):
            if self.state is ParserState.AWAITING_METRICS:
                m = BYTES_SENT.search(line)
                if m:
                    self._sent = int(m.group(1))
                m = BYTES_RECEIVED.search(line)
                if m:
                    self._received = int(m.group(1))
                self._has_metrics = True
            return None

        header = parse_header(line)
        if header is None:
            return None

        done = self._flush(observed_at)
        pids, remote = header
        if pids and remote:
            self._pids, self._remote = pids, remote
            self.state = ParserState.AWAITING_METRICS
        return done

    def finish(self, observed_at: float) -> Optional[ConnectionSample]:
        return self._flush(observed_at)


def iter_samples(text: str, observed_at: float) -> Iterator[ConnectionSample]:
    parser = SocketSampleParser()
    for line in (text or "").splitlines():
        sample = parser.feed(line, observed_at)
        if sample is not None:
            yield sample
    sample = parser.finish(observed_at)
    if sample is not None:
        yield sample


def parse_samples(text: str, observed_at: float) -> List[ConnectionSample]:
    return list(iter_samples(text, observed_at))
