# -*- coding: utf-8 -*-
"""Traffic accounting and quota/expiry enforcement for SSH tunnel accounts."""

__version__ = "1.0.0"
