"""
Tagged practice events accepted by the session event machine.

Callers may pass a model instance directly or a raw mapping such as
``{"type": "answer", "correct": True}``; :func:`parse_event` validates the
mapping against the discriminated union.
"""

from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    TypeAdapter,
    ValidationError,
)

from .exceptions import MalformedEventError


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class StartEvent(_Event):
    type: Literal["start"] = "start"


class RevealBackEvent(_Event):
    type: Literal["revealBack"] = "revealBack"


class AnswerEvent(_Event):
    type: Literal["answer"] = "answer"
    correct: StrictBool


class AdvanceEvent(_Event):
    type: Literal["advance"] = "advance"


class NavigateEvent(_Event):
    type: Literal["navigate"] = "navigate"
    to: StrictInt = Field(..., ge=0)


class SetOutcomeEvent(_Event):
    type: Literal["setOutcome"] = "setOutcome"
    correct: StrictBool


PracticeEvent = Annotated[
    Union[
        StartEvent,
        RevealBackEvent,
        AnswerEvent,
        AdvanceEvent,
        NavigateEvent,
        SetOutcomeEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(PracticeEvent)


def parse_event(raw: Union[_Event, Mapping[str, Any]]) -> _Event:
    """
    Validate an incoming event.

    Raises:
        MalformedEventError: If the payload is not one of the six event
            variants or its fields have the wrong type.
    """
    if isinstance(raw, _Event):
        return raw
    if not isinstance(raw, Mapping):
        raise MalformedEventError(
            f"Event must be a mapping, got {type(raw).__name__}."
        )
    try:
        return _event_adapter.validate_python(dict(raw))
    except ValidationError as e:
        error_details = e.errors()[0]
        field = ".".join(map(str, error_details["loc"])) or "type"
        raise MalformedEventError(
            f"Invalid event field '{field}': {error_details['msg']}"
        ) from e
