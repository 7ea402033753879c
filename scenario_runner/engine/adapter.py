"""Backend-agnostic browser automation contract.

The executor only ever talks to an ``AutomationAdapter``. Concrete backends
live in ``browser.py`` and are picked once, from configuration, through
``backends.py``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class InterceptOptions(BaseModel):
    """A request-matching rule installed by ``intercept_network``.

    ``url`` is a glob unless ``regex`` is set. ``method=None`` matches every
    method. With ``inject_headers`` matching requests are passed on with the
    extra headers instead of being fulfilled with ``mock_data``. Requests a
    rule does not serve go on to the rule installed before it.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    url: str
    regex: bool = False
    method: Optional[str] = "GET"
    status: int = 200
    content_type: str = "application/json"
    mock_data: Any = None
    inject_headers: Optional[dict[str, str]] = None

    def matches_method(self, method: str) -> bool:
        return self.method is None or self.method.upper() == method.upper()


class AutomationAdapter(ABC):
    """Capability set every browser backend must provide.

    Every call may suspend and may raise an ``AdapterError`` subclass.
    Instances are single-use async context managers: entering launches the
    browser, leaving always closes it.
    """

    async def __aenter__(self) -> "AutomationAdapter":
        try:
            await self.launch()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @abstractmethod
    async def launch(self): ...

    @abstractmethod
    async def close(self):
        """Release every backend resource. Must not raise."""

    @abstractmethod
    async def navigate(self, url: str): ...

    @abstractmethod
    async def click(self, selector: str): ...

    @abstractmethod
    async def fill(self, selector: str, value: str): ...

    @abstractmethod
    async def get_text(self, selector: str) -> str: ...

    @abstractmethod
    async def get_attribute(self, selector: str, name: str) -> Optional[str]: ...

    @abstractmethod
    async def get_style(self, selector: str, prop: str) -> str: ...

    @abstractmethod
    async def get_value(self, selector: str) -> str: ...

    @abstractmethod
    async def get_current_url(self) -> str: ...

    @abstractmethod
    async def wait_for_selector(self, selector: str, timeout: int): ...

    @abstractmethod
    async def is_visible(self, selector: str) -> bool: ...

    @abstractmethod
    async def get_text_content(self, selector: str) -> str: ...

    @abstractmethod
    async def get_frame_content(self, frame_selector: str, content_selector: str) -> str: ...

    @abstractmethod
    async def intercept_network(self, options: InterceptOptions): ...
