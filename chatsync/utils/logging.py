import logging
import os

# Chatty transport loggers from the Google client libraries.
_QUIET_LOGGERS = ("google.auth.transport", "google.api_core", "urllib3.connectionpool")


def configure_logging(level: str | None = None) -> None:
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if level != "DEBUG":
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
