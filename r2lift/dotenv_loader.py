# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Idempotent ``.env`` loading.

Environment variables are read from two locations, in order:

1. ``~/.config/r2lift/.env`` (XDG config directory, next to
   ``r2lift.yaml``)
2. ``.env`` in the current working directory

``python-dotenv`` never overwrites variables that are already set, so the
process environment wins over both files and the XDG file wins over the
working-directory one.
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once() -> None:
    """Load ``.env`` files once per process.

    Subsequent calls are no-ops until ``reset_dotenv_state`` is called.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    from r2lift.config import get_dotenv_path

    xdg_env = get_dotenv_path()
    if xdg_env.exists():
        load_dotenv(xdg_env)
        logger.debug("Loaded .env from %s", xdg_env)

    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(cwd_env)
        logger.debug("Loaded .env from %s", cwd_env)

    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the dotenv loaded state. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False
