"""Pydantic models for the declarative scenario definition."""

from __future__ import annotations

from typing import Any, Literal, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..constants import REQUIRED_STEP_FIELDS
from ..engine.adapter import InterceptOptions
from ..engine.errors import ValidationError

StepAction = Literal["navigate", "fill", "click", "waitForSelector", "expect"]


class Step(BaseModel):
    """One browser instruction."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    action: StepAction
    selector: Optional[str] = None
    value: Optional[str] = None
    url: Optional[str] = None
    timeout: Optional[int] = Field(default=None, gt=0)  # milliseconds
    human_verification: bool = False

    @model_validator(mode="after")
    def _check_required_fields(self) -> "Step":
        missing = [f for f in REQUIRED_STEP_FIELDS[self.action] if getattr(self, f) is None]
        if missing:
            raise ValueError(f"'{self.action}' step requires {', '.join(missing)}")
        return self


class Scenario(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    steps: tuple[Step, ...]


class ScenarioModel(BaseModel):
    """Ordered scenarios to run, in order, against one browser."""

    model_config = ConfigDict(frozen=True)

    scenarios: tuple[Scenario, ...]

    def flatten(self) -> list[Step]:
        """All steps in execution order: scenario order, then step order."""
        return [step for scenario in self.scenarios for step in scenario.steps]

    @property
    def total_steps(self) -> int:
        return sum(len(scenario.steps) for scenario in self.scenarios)


class ExecutionRequest(BaseModel):
    """Body of an execute call: the scenarios plus per-run network setup.

    ``mocks`` maps a URL fragment to the JSON body served for GET requests
    matching ``**/<fragment>``. ``auth_token`` adds a bearer Authorization
    header to every request the page makes.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    scenarios: tuple[Scenario, ...]
    base_url: str = ""
    mocks: dict[str, Any] = Field(default_factory=dict)
    auth_token: Optional[str] = None

    def scenario_model(self) -> ScenarioModel:
        return ScenarioModel(scenarios=self.scenarios)

    def intercepts(self) -> list[InterceptOptions]:
        """Network rules to install before the first step, in install order.

        Playwright consults the newest rule first, so mocks answer before the
        catch-all header rule passes a request on.
        """
        rules = []
        if self.auth_token:
            rules.append(InterceptOptions(
                url=".*",
                regex=True,
                method=None,
                inject_headers={"Authorization": f"Bearer {self.auth_token}"},
            ))
        for fragment, mock_data in self.mocks.items():
            rules.append(InterceptOptions(url=f"**/{fragment.lstrip('/')}", mock_data=mock_data))
        return rules


def _validate(cls: type[BaseModel], data: Any):
    try:
        return cls.model_validate(data)
    except pydantic.ValidationError as e:
        problems = []
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"])
            problems.append(f"{location}: {err['msg']}" if location else err["msg"])
        raise ValidationError(problems) from e


def parse_scenario_model(data: Any) -> ScenarioModel:
    """Validate raw JSON into a ScenarioModel.

    Raises:
        ValidationError: listing every problem found, with its location.
    """
    return _validate(ScenarioModel, data)


def parse_execution_request(data: Any) -> ExecutionRequest:
    """Validate an execute request body. Raises ValidationError."""
    return _validate(ExecutionRequest, data)
