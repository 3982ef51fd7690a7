# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""EventProbe: predict which analytics events a page can fire, then check them against observed data.

Pipeline per page: render -> structural trigger rules -> vision check of
required UI elements -> prediction -> comparison with the analytics
backend's observed event distribution.
"""

from __future__ import annotations

__version__ = "0.1.0"
