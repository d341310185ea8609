import logging
import logging.handlers
import os

from app.core.config import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(cfg: Settings) -> None:
    """
    Console logging always; daily rotated file logs (30 kept) when LOG_DIR is set.
    """
    root = logging.getLogger()
    root.setLevel(cfg.log_level.upper())

    for handler in list(root.handlers):
        if getattr(handler, "_plate_svc", False):
            root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._plate_svc = True
    root.addHandler(console)

    if cfg.log_dir:
        os.makedirs(cfg.log_dir, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            os.path.join(cfg.log_dir, "app.log"),
            when="midnight",
            backupCount=30,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler._plate_svc = True
        root.addHandler(file_handler)

    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
