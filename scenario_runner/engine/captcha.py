"""CAPTCHA detection for steps that hand control to a human."""

from __future__ import annotations

import logging
import sys

from ..constants import CAPTCHA_SELECTORS
from .adapter import AutomationAdapter
from .errors import AdapterError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


async def detect_captcha(adapter: AutomationAdapter) -> str | None:
    """Return the type of the first visible CAPTCHA widget, or None.

    Detection is best effort: a failed check just moves on to the next marker.
    """
    for selector, captcha_type in CAPTCHA_SELECTORS:
        try:
            if await adapter.is_visible(selector):
                logger.info(f"Detected CAPTCHA type: {captcha_type}")
                return captcha_type
        except AdapterError as e:
            logger.debug(f"CAPTCHA check '{selector}' failed: {e}")
            continue
    return None


def verification_message(captcha_type: str | None) -> str:
    if captcha_type:
        return f"Human verification required: {captcha_type} detected. Solve it in the browser window."
    return "Human verification required"
