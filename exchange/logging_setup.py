import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FILE = "exchange.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(settings) -> Optional[Path]:
    """Configure root logging; adds a rotating file under LOG_DIR when one is set."""
    level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)
    fmt = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        root.addHandler(stream)

    if not settings.LOG_DIR:
        return None

    log_dir = Path(settings.LOG_DIR).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE

    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(fmt)
    handler.setLevel(level)

    def _has_file_handler(lg: logging.Logger) -> bool:
        return any(getattr(h, "baseFilename", "").endswith(LOG_FILE) for h in lg.handlers)

    if not _has_file_handler(root):
        root.addHandler(handler)

    # uvicorn loggers do not propagate to root
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.setLevel(level)
        if not _has_file_handler(lg):
            lg.addHandler(handler)

    return log_path
