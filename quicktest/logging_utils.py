import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the package logger.

    Safe to call more than once: an existing handler is reused and only the
    level changes.
    """
    logger = logging.getLogger("quicktest")
    logger.setLevel(level.upper())
    if not any(getattr(h, "_quicktest", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._quicktest = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.propagate = False
