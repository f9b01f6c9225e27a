"""Pytest configuration.

Ensures that the ``src`` directory is importable so that the ``tracklens``
package resolves when the suite runs from a plain checkout without an
editable install.
"""

import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# The package logger writes to a file on import; keep test runs out of ./log.
os.environ.setdefault(
    "TRACKLENS_LOG_DIR", str(Path(tempfile.gettempdir()) / "tracklens-tests")
)
