"""
Shared helpers.
"""
import logging
import sys

from app.core import config


_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_root = logging.getLogger("app")
if not _root.handlers:
    _handler = logging.StreamHandler(sys.stdout)
    _handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    _root.addHandler(_handler)
_root.setLevel(config.LOG_LEVEL)


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger under the ``app`` namespace.

    Modules outside the ``app`` package (``server``, ``scripts.*``) are nested
    under it so they share the same handler and level.
    """
    if name != "app" and not name.startswith("app."):
        name = f"app.{name}"
    return logging.getLogger(name)
