"""Root pytest configuration (kept intentionally minimal).

The application package resides in ``backend/receipt_vault``.  When the
project is not installed, make ``import receipt_vault`` work by putting the
backend directory on ``sys.path``.
"""

from __future__ import annotations

import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))
