from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# Third-party loggers that are chatty at DEBUG and add nothing at INFO.
_NOISY_LOGGERS = ("websockets", "urllib3", "asyncio")


def setup_logging(
    level: str = "INFO",
    symbol: str = "default",
    base_dir: Optional[str | Path] = "logs",
    component: str = "lob_feed",
) -> Optional[Path]:
    """Install console logging and, unless ``base_dir`` is None, a daily file.

    File layout: <base_dir>/<component>/<symbol>/YYYY-MM-DD.log (UTC date).
    Returns the log file path, or None for console-only logging.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(_FORMAT)
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(sh)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))

    if base_dir is None:
        return None

    log_dir = Path(base_dir) / component / symbol
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{datetime.now(timezone.utc):%Y-%m-%d}.log"
    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(fmt)
    root.addHandler(fh)
    return log_path
