"""ISO-8601 duration parsing for range arguments such as ``PT60S``."""
from datetime import timedelta
from typing import Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from meteranalyzer.errors import ParseError, ValidationError

_TIMEDELTA = TypeAdapter(timedelta)
_MILLISECOND = timedelta(milliseconds=1)


def _to_millis(value: timedelta) -> int:
    return value // _MILLISECOND


def parse_duration_ms(value: str) -> int:
    """Parse an ISO-8601 ``PnDTnHnMn.nS`` duration into milliseconds.

    Fractions below one millisecond are truncated. The result may be zero or
    negative; use :func:`parse_range_ms` for range arguments.
    """
    if not isinstance(value, str):
        raise ParseError(f"duration must be a string, got {type(value).__name__}")

    text = value.strip().upper()
    # pydantic also takes "HH:MM:SS" and bare seconds; ranges are ISO-8601 only
    if not text.lstrip("+-").startswith("P"):
        raise ParseError(f"Invalid duration: {value!r}")
    try:
        return _to_millis(_TIMEDELTA.validate_python(text))
    except PydanticValidationError as e:
        raise ParseError(f"Invalid duration: {value!r}") from e


def parse_range_ms(range_: Union[str, timedelta]) -> int:
    """Parse a range argument and require it to be strictly positive."""
    if isinstance(range_, timedelta):
        millis = _to_millis(range_)
    elif isinstance(range_, str) and range_.strip():
        millis = parse_duration_ms(range_)
    else:
        raise ParseError(f"Range must be a non-empty ISO-8601 duration, got {range_!r}")

    if millis <= 0:
        raise ValidationError(f"Range must be positive, got {range_!r}")
    return millis
