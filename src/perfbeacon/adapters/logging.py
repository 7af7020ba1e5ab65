"""Logging helpers for perfbeacon.

The agent logs through the standard library under the ``perfbeacon``
namespace. A NullHandler is attached to the namespace root so nothing is
emitted unless the host application configures logging.
"""

import logging

ROOT_LOGGER_NAME = "perfbeacon"

logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger beneath the perfbeacon namespace.

    Args:
        name: Module name (usually ``__name__``). Names outside the
            perfbeacon namespace are nested under it.

    Returns:
        A standard library Logger.
    """
    if not name or name == ROOT_LOGGER_NAME:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def enable_debug_logging(level: int = logging.DEBUG) -> logging.Handler:
    """Attach a stderr handler to the perfbeacon namespace.

    Useful while diagnosing why telemetry is not arriving: skipped
    deliveries and swallowed instrumentation errors are logged at DEBUG.

    Args:
        level: Level for both the logger and the handler.

    Returns:
        The attached handler, so callers can remove it again.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler
