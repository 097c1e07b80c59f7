"""Keepsake backend application.

The realtime chat core lives in ``backend/src/keepsake``; make it importable
when the backend is started from a source checkout.
"""

from pathlib import Path
import sys

SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if SRC_PATH.exists() and str(SRC_PATH) not in sys.path:  # pragma: no branch
    sys.path.append(str(SRC_PATH))

from app.main import app

__all__ = ["app"]
