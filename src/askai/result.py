"""Response pipeline: parse -> clean -> test, and the detailed call result."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import re
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from askai.errors import AskAIError, DataError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from askai.config import BackendKind

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n(.*?)\n?```$", re.DOTALL)


@dataclass(frozen=True)
class AskResult:
    """Everything one `ask_ai_detailed()` call produced."""

    #: Parsed, cleaned, and validated value (what `ask_ai()` returns).
    value: Any
    #: Raw model text before any post-processing.
    text: str
    #: Model reasoning, present only with ``include_thoughts``.
    thoughts: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    cost: float = 0.0
    cached: bool = False
    cache_key: str | None = None
    backend: BackendKind | None = None
    model: str | None = None


def strip_code_fence(text: str) -> str:
    """Remove a single Markdown code fence wrapping the whole text."""
    stripped = text.strip()
    m = _FENCE_RE.match(stripped)
    return m.group(1) if m else stripped


def parse_json_text(text: str) -> Any:
    """Parse model output as JSON.

    Raises:
        DataError: Carrying the offending raw text.
    """
    try:
        return json.loads(strip_code_fence(text))
    except ValueError as e:
        preview = text if len(text) <= 200 else text[:200] + "..."
        raise DataError(
            f"Model output is not valid JSON: {e}",
            raw_text=text,
            hint=f"Raw output began with: {preview!r}",
        ) from e


def _validator_name(fn: Callable[[Any], Any]) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)


def run_validators(value: Any, validators: Sequence[Callable[[Any], Any]]) -> None:
    """Run validators in order; the first failure aborts.

    A validator fails by raising or by returning ``False``. askai errors are
    re-raised unchanged; any other exception becomes a ValidationError whose
    ``diagnostic`` is the original exception.
    """
    for index, validator in enumerate(validators):
        name = _validator_name(validator)
        try:
            outcome = validator(value)
        except AskAIError:
            raise
        except Exception as e:
            raise ValidationError(
                f"Validator {name} rejected the response: {e}",
                diagnostic=e,
            ) from e
        if outcome is False:
            raise ValidationError(
                f"Validator {name} rejected the response",
                diagnostic=f"test[{index}] returned False",
            )


def process_response(
    text: str,
    *,
    parse_json: bool,
    clean: Callable[[Any], Any] | None = None,
    validators: Sequence[Callable[[Any], Any]] = (),
    schema_model: type[BaseModel] | None = None,
) -> Any:
    """Turn raw model text into the caller's value.

    Steps run in a fixed order: parse (when *parse_json*), schema validation
    (when a Pydantic model is given), clean, then every validator.
    """
    value: Any = text
    if parse_json:
        value = parse_json_text(text)
        if schema_model is not None:
            try:
                value = schema_model.model_validate(value)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Response does not match {schema_model.__name__}: "
                    f"{e.error_count()} error(s)",
                    diagnostic=e,
                ) from e

    if clean is not None:
        value = clean(value)

    run_validators(value, validators)
    return value
