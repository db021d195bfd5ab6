import logging, os, json, sys


def get_logger(name: str) -> logging.LoggerAdapter:
    logger = logging.getLogger(name)
    if not logger.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s | extras=%(extras)s"
        ))
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False
    return logging.LoggerAdapter(logger, extra={"extras": "{}"})


def with_extras(logger, **extras) -> logging.LoggerAdapter:
    # attach JSON extras for consistent structured logs
    base = logger.logger if isinstance(logger, logging.LoggerAdapter) else logger
    return logging.LoggerAdapter(
        base, extra={"extras": json.dumps(extras, ensure_ascii=False, default=str)}
    )


def log_event(logger, level: int, msg: str, *, exc_info: bool = False, **extras) -> None:
    """Log ``msg`` at ``level`` with ``extras`` rendered as JSON."""
    target = with_extras(logger, **extras) if extras else logger
    target.log(level, msg, exc_info=exc_info)
