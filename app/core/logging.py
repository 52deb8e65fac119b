import logging
import sys

NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "apscheduler")


def setup_logging(level: str = "INFO") -> None:
    """
    Configure NAV engine logging once at import of app.main.

    Run lifecycle, approval and FX fallback events are logged as
    `EVENT | key=value` lines on top of this format.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
