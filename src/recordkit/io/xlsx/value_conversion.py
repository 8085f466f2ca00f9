import decimal
import math
import re
from collections.abc import Callable
from datetime import date, datetime, time, tzinfo
from functools import cache
from typing import Any
from zoneinfo import ZoneInfo

from loguru import logger

from .conf import C_TZ_REFERENCE, TUP_DATE_PATTERNS_ALTERNATE

_RE_BRACKETED_ZONE = re.compile(r"\[.*\]")

################################################################################
# #region NumericConversion


def convert_to_float(value: Any) -> float | None:
    """
    Stringify-then-parse a value as a 64-bit float.

    Returns ``None`` (blank cell) for ``None``, unparsable text and NaN/Inf.
    """
    if value is None:
        return None
    try:
        n_value = float(str(value).strip())
    except ValueError:
        logger.debug(f"Value {value!r} is not numeric; leaving the cell blank.")
        return None
    if not math.isfinite(n_value):
        logger.debug(f"Value {value!r} is not finite; leaving the cell blank.")
        return None
    return n_value


def convert_number_to_float(value: Any) -> float | None:
    """Fast path for values already declared numeric."""
    if value is None:
        return None
    if isinstance(value, (int, float, decimal.Decimal)) and not isinstance(
        value, bool
    ):
        n_value = float(value)
        return n_value if math.isfinite(n_value) else None
    return convert_to_float(value)


# #endregion
################################################################################
# #region DateConversion


@cache
def get_reference_tz(name: str = C_TZ_REFERENCE) -> tzinfo:
    return ZoneInfo(name)


def anchor_datetime(value: datetime, tz_reference: tzinfo) -> datetime:
    """
    Return a naive datetime in the reference zone.

    Zone-bearing values are converted through their absolute instant; naive
    values are taken to be reference-zone wall time already.
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=None)
    return value.astimezone(tz_reference).replace(tzinfo=None)


def convert_date_to_datetime(value: date) -> datetime:
    return datetime.combine(value, time.min)


def _parse_iso(text: str) -> datetime | None:
    # Accepts date-only, `T` or space separators, fractions, offsets and `Z`.
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_timestamp(
    text: str | None, *, tz_reference: tzinfo | None = None
) -> datetime | None:
    """
    Parse a permissive timestamp string into a naive reference-zone datetime.

    ISO-8601 is tried first (after dropping a bracketed zone-name suffix,
    ``2018-10-18T14:36:19.419-05:00[UTC-05:00]`` -> ``...-05:00``), then
    every pattern of ``TUP_DATE_PATTERNS_ALTERNATE`` in order.

    Returns ``None`` when the text is blank or nothing matches.
    """
    if text is None or not text.strip():
        return None
    tz_ref = tz_reference or get_reference_tz()
    c_text = _RE_BRACKETED_ZONE.sub("", text).strip()

    dt_parsed = _parse_iso(c_text)
    if dt_parsed is None:
        logger.debug(
            f"Timestamp {c_text!r} is not ISO-8601; trying alternate date patterns."
        )
        for _pattern in TUP_DATE_PATTERNS_ALTERNATE:
            try:
                dt_parsed = datetime.strptime(c_text, _pattern)
            except ValueError:
                continue
            break

    if dt_parsed is None:
        logger.warning(f"Unable to parse {text!r} with any known date format.")
        return None
    return anchor_datetime(dt_parsed, tz_ref)


def create_datetime_converter(
    native_type: type | None, *, tz_reference: tzinfo
) -> Callable[[Any], datetime | None]:
    """
    Build the value -> naive datetime converter for one native type.

    The dispatch happens here, once; the returned function only converts.
    """
    if native_type is not None and issubclass(native_type, datetime):

        def _from_datetime(value: Any) -> datetime | None:
            if value is None:
                return None
            if not isinstance(value, datetime):
                return parse_timestamp(str(value), tz_reference=tz_reference)
            return anchor_datetime(value, tz_reference)

        return _from_datetime

    if native_type is not None and issubclass(native_type, date):

        def _from_date(value: Any) -> datetime | None:
            if value is None:
                return None
            if isinstance(value, datetime):
                return anchor_datetime(value, tz_reference)
            if not isinstance(value, date):
                return parse_timestamp(str(value), tz_reference=tz_reference)
            return convert_date_to_datetime(value)

        return _from_date

    def _from_text(value: Any) -> datetime | None:
        return parse_timestamp(
            "" if value is None else str(value), tz_reference=tz_reference
        )

    return _from_text


# #endregion
################################################################################
