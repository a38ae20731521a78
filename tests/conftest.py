"""Pytest configuration.

The packages can be used straight from a checkout without an editable
install. When pytest runs without the repository root on `sys.path`, imports
like `import lob_core` would fail; this puts the root there.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
