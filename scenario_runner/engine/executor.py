"""Step scheduler: drives one session through its steps, one at a time."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional, Sequence
from urllib.parse import urljoin

from ..config import DEFAULT_SELECTOR_TIMEOUT, STEP_DELAY_MS
from ..constants import (
    ACTION_CLICK,
    ACTION_EXPECT,
    ACTION_FILL,
    ACTION_NAVIGATE,
    ACTION_WAIT_FOR_SELECTOR,
    EVENT_EXECUTION_COMPLETE,
    EVENT_EXECUTION_ERROR,
    EVENT_EXECUTION_UPDATE,
    EVENT_MANUAL_VERIFICATION_REQUIRED,
)
from ..models.events import ExecutionEvent
from ..models.scenario import ScenarioModel, Step
from ..models.session import Session
from .adapter import AutomationAdapter, InterceptOptions
from .backends import BackendFactory
from .broadcaster import EventBroadcaster
from .captcha import detect_captcha, verification_message
from .errors import AdapterError, ElementNotFound
from .registry import SessionRegistry

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def describe_step(step: Step) -> str:
    """Human-readable log line for a step."""
    if step.action == ACTION_NAVIGATE:
        return f"Navigating to {step.url}"
    if step.action == ACTION_FILL:
        return f"Filling {step.selector} field"
    if step.action == ACTION_CLICK:
        return f"Clicking {step.selector}"
    if step.action == ACTION_WAIT_FOR_SELECTOR:
        return f"Waiting for {step.selector}"
    if step.action == ACTION_EXPECT:
        return f"Verifying {step.selector}"
    return f"Executing {step.action}"


class StepExecutor:
    """Runs a scenario model for one session against a fresh backend instance.

    Steps are flattened (scenario order, then step order) and executed
    strictly in sequence. Pause, stop and manual verification are observed
    through the registry between steps; an in-flight backend call is never
    interrupted.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        broadcaster: EventBroadcaster,
        backend_factory: BackendFactory,
        step_delay: float = STEP_DELAY_MS / 1000,
        default_timeout: int = DEFAULT_SELECTOR_TIMEOUT,
    ):
        self._registry = registry
        self._broadcaster = broadcaster
        self._backend_factory = backend_factory
        self._step_delay = step_delay
        self._default_timeout = default_timeout

    async def run(
        self,
        session_id: int,
        model: ScenarioModel,
        base_url: str = "",
        intercepts: Sequence[InterceptOptions] = (),
    ) -> Session:
        """Drive the session to a terminal state (or until it is stopped).

        ``intercepts`` are installed on the fresh browser before the first step.
        """
        steps = model.flatten()
        logger.info(f"Session {session_id}: starting {len(steps)} steps")

        try:
            async with self._backend_factory() as adapter:
                for rule in intercepts:
                    await adapter.intercept_network(rule)
                if intercepts:
                    logger.info(f"Session {session_id}: {len(intercepts)} network rule(s) installed")
                await self._run_steps(session_id, steps, adapter, base_url)
        except AdapterError as e:
            # Launch or network setup failed
            await self._fail(session_id, str(e))
        except asyncio.CancelledError:
            logger.warning(f"Session {session_id}: executor task cancelled")
            raise
        except Exception as e:
            logger.error(f"Session {session_id}: unexpected executor failure: {e}", exc_info=True)
            await self._fail(session_id, f"Unexpected error: {e}")

        return self._registry.get(session_id)

    async def _run_steps(self, session_id: int, steps: list[Step], adapter: AutomationAdapter, base_url: str):
        for index, step in enumerate(steps):
            if self._registry.is_cancelled(session_id):
                logger.info(f"Session {session_id}: stopped before step {index + 1}")
                return
            if not await self._registry.wait_until_running(session_id):
                logger.info(f"Session {session_id}: stopped while paused")
                return

            message = describe_step(step)
            logger.info(f"Session {session_id}: step {index + 1}/{len(steps)} - {message}")
            try:
                await self._perform(adapter, step, base_url)
            except AdapterError as e:
                logger.error(f"Session {session_id}: step {index + 1} failed: {e}")
                await self._fail(session_id, str(e))
                return

            if step.human_verification and not await self._await_verification(
                session_id, adapter, index + 1
            ):
                return

            session = await self._registry.record_progress(session_id, message)
            if session is None:
                return
            await self._broadcaster.publish(
                ExecutionEvent.for_session(EVENT_EXECUTION_UPDATE, session, message)
            )

            if index < len(steps) - 1 and self._step_delay > 0:
                await asyncio.sleep(self._step_delay)

        session = await self._registry.finish(session_id)
        if session is not None:
            logger.info(f"Session {session_id}: completed {session.current_step}/{session.total_steps} steps")
            await self._broadcaster.publish(
                ExecutionEvent.for_session(
                    EVENT_EXECUTION_COMPLETE, session, "All tests completed successfully"
                )
            )

    async def _perform(self, adapter: AutomationAdapter, step: Step, base_url: str):
        """Map a step onto the capability contract."""
        if step.action == ACTION_NAVIGATE:
            await adapter.navigate(urljoin(base_url, step.url) if base_url else step.url)
        elif step.action == ACTION_FILL:
            await adapter.fill(step.selector, step.value)
        elif step.action == ACTION_CLICK:
            await adapter.click(step.selector)
        elif step.action == ACTION_WAIT_FOR_SELECTOR:
            await adapter.wait_for_selector(step.selector, step.timeout or self._default_timeout)
        elif step.action == ACTION_EXPECT:
            if step.timeout:
                await adapter.wait_for_selector(step.selector, step.timeout)
            if not await adapter.is_visible(step.selector):
                raise ElementNotFound(f"Expected {step.selector} to be visible")
        else:
            raise ValueError(f"Unsupported step action: {step.action}")

    async def _await_verification(self, session_id: int, adapter: AutomationAdapter, step_number: int) -> bool:
        """Hand control to a human. False if the session was stopped meanwhile."""
        message = verification_message(await detect_captcha(adapter))
        session = await self._registry.enter_manual_verification(session_id, message)
        if session is None:
            return False

        await self._broadcaster.publish(
            ExecutionEvent.for_session(
                EVENT_MANUAL_VERIFICATION_REQUIRED, session, message, current_step=step_number
            )
        )
        logger.info(f"Session {session_id}: waiting for manual verification at step {step_number}")
        if not await self._registry.wait_for_verification(session_id):
            logger.info(f"Session {session_id}: stopped during manual verification")
            return False
        return True

    async def _fail(self, session_id: int, message: str) -> Optional[Session]:
        session = await self._registry.fail(session_id, message)
        if session is not None:
            await self._broadcaster.publish(
                ExecutionEvent.for_session(EVENT_EXECUTION_ERROR, session, message)
            )
        return session
