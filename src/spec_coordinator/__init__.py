"""
spec-coordinator - package root

File: src/spec_coordinator/__init__.py

Purpose
- Drive feature specs through lead/validator build cycles run by external AI
  coding CLIs until validators reach consensus or the iteration budget runs out.

Import boundary
- No side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.4.0"

__all__ = ["__version__"]
