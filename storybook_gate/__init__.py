"""Admission limiting and job watching for photo personalization requests.

The admission limiter and job watcher are plain in-process objects; the
composition root (CLI or request handler) owns their lifecycle, including the
periodic cleanup task.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
