"""Closed set of automation backends, resolved once from configuration."""

from __future__ import annotations

from enum import Enum
from functools import partial
from typing import Callable, Optional

from ..config import AUTOMATION_BACKEND, BROWSER_HEADLESS, BROWSER_TIMEOUT
from .adapter import AutomationAdapter
from .browser import CamoufoxAdapter, PlaywrightAdapter

BackendFactory = Callable[[], AutomationAdapter]


class Backend(str, Enum):
    PLAYWRIGHT = "playwright"
    CAMOUFOX = "camoufox"


BACKENDS: dict[Backend, type[AutomationAdapter]] = {
    Backend.PLAYWRIGHT: PlaywrightAdapter,
    Backend.CAMOUFOX: CamoufoxAdapter,
}


def get_backend_factory(
    name: str = AUTOMATION_BACKEND,
    headless: Optional[bool] = None,
    timeout: int = BROWSER_TIMEOUT,
) -> BackendFactory:
    """Return a zero-argument callable producing a fresh adapter per session.

    Raises:
        ValueError: if ``name`` is not one of the registered backends.
    """
    try:
        backend = Backend(name.lower())
    except ValueError:
        available = ", ".join(b.value for b in Backend)
        raise ValueError(f"Unknown automation backend '{name}'. Available: {available}") from None

    adapter_cls = BACKENDS[backend]
    return partial(
        adapter_cls,
        headless=headless if headless is not None else BROWSER_HEADLESS,
        timeout=timeout,
    )
