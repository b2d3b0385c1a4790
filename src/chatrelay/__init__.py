# ChatRelay package init
import logging
import os


def _configure_logging() -> None:
    level_name = (os.getenv("CHATRELAY_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("chatrelay")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[CHATRELAY][%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    turn_level_name = (os.getenv("CHATRELAY_TURN_LOG_LEVEL") or level_name).upper()
    turn_level = getattr(logging, turn_level_name, level)
    logging.getLogger("chatrelay.turn").setLevel(turn_level)


_configure_logging()
