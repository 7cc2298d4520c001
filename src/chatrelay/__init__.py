# chatrelay package init
import logging
import os


def _configure_logging() -> None:
    level_name = (os.getenv("CHATRELAY_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("chatrelay")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[CHATRELAY][%(levelname)s] %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    gateway_level_name = (os.getenv("CHATRELAY_GATEWAY_LOG_LEVEL") or level_name).upper()
    gateway_level = getattr(logging, gateway_level_name, level)
    logging.getLogger("chatrelay.gateway").setLevel(gateway_level)


_configure_logging()
