"""
ChatCal Assistant: parameter validation.

Turns a raw (name, arguments) pair from either resolver into a typed,
immutable Action, or raises with every offending field listed. This is
the only gate between untrusted resolver output and the executor.
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from pydantic import ValidationError as PydanticValidationError

from src.core.actions import ARGUMENT_MODELS, Action, ActionKind, RawAction
from src.core.errors import FieldIssue, UnknownAction, ValidationError

logger = logging.getLogger(__name__)

# Model-level checks (e.g. "eventId or searchTitle") have no single field.
_WHOLE_OBJECT = "arguments"


def _issues_from(exc: PydanticValidationError) -> list[FieldIssue]:
    issues = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or _WHOLE_OBJECT
        msg = str(err.get("msg", "invalid"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        issues.append(FieldIssue(field=loc, reason=msg))
    return issues


class ParameterValidator:
    """Checks action arguments against the catalogue.

    Naive datetimes in the arguments are read in `tz`, the user's zone.
    """

    def __init__(self, tz: ZoneInfo | str = "UTC") -> None:
        self._tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)

    def validate(self, name: str, arguments: object) -> Action:
        try:
            kind = ActionKind(name)
        except ValueError:
            raise UnknownAction(name) from None

        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ValidationError(name, [FieldIssue(_WHOLE_OBJECT, "must be an object")])

        model = ARGUMENT_MODELS[kind]
        try:
            parsed = model.model_validate(arguments, context={"tz": self._tz})
        except PydanticValidationError as e:
            issues = _issues_from(e)
            logger.info("Rejected %s: %d invalid field(s)", name, len(issues))
            raise ValidationError(name, issues) from None
        return Action(kind=kind, arguments=parsed)

    def validate_raw(self, raw: RawAction) -> Action:
        return self.validate(raw.name, raw.arguments)
