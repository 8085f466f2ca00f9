"""
Per-field cell writers.

A cell writer is ``record -> SpecCellValue | None``: it reads one field of a
record, converts it to the cell's primitive and pairs it with the field's
format. All type dispatch happens while *building* the writer, once per field;
invoking it per record is a plain accessor + conversion call.
"""

import decimal
import math
from collections.abc import Callable
from datetime import date, datetime, tzinfo
from typing import Any

import xlsxwriter.worksheet
from loguru import logger

from .registry import XlsxStyleRegistry
from .resolver import classify_native_type
from .spec import (
    EnumCellKind,
    EnumCellValueType,
    SpecCellValue,
    SpecResolvedField,
)
from .value_conversion import (
    convert_number_to_float,
    convert_to_float,
    create_datetime_converter,
    get_reference_tz,
)

TypeCellWriter = Callable[[Any], SpecCellValue | None]

_TUP_NUMERIC_BASES: tuple[type, ...] = (int, float, decimal.Decimal)


class CellWriterFactory:
    """
    Build and cache one :data:`TypeCellWriter` per resolved field.

    The factory belongs to a single document; writers are never shared across
    exports. ``n_writers_built`` counts how often the dispatch actually ran.
    """

    def __init__(
        self, styles: XlsxStyleRegistry, *, tz_reference: tzinfo | None = None
    ):
        self._styles = styles
        self._tz_reference = tz_reference or get_reference_tz()
        self._writers: dict[SpecResolvedField, TypeCellWriter] = {}
        self.n_writers_built = 0

    def writer_for(self, fld: SpecResolvedField) -> TypeCellWriter:
        writer = self._writers.get(fld)
        if writer is None:
            writer = (
                self._build_override_writer(fld)
                if fld.has_kind_override
                else self._build_native_writer(fld)
            )
            self._writers[fld] = writer
            self.n_writers_built += 1
        return writer

    ############################################################################
    # #region ExplicitKind

    def _build_override_writer(self, fld: SpecResolvedField) -> TypeCellWriter:
        kind = fld.kind_override or EnumCellKind.GENERAL
        fmt = self._styles.style_for(kind)
        accessor = fld.accessor
        cls_base = classify_native_type(fld.native_type)

        if kind.is_numeric:
            convert_number = (
                convert_number_to_float
                if cls_base in _TUP_NUMERIC_BASES
                else convert_to_float
            )

            def _write_numeric(record: Any) -> SpecCellValue:
                n_value = convert_number(accessor(record))
                if n_value is None:
                    return SpecCellValue(EnumCellValueType.BLANK, None, fmt)
                return SpecCellValue(EnumCellValueType.NUMBER, n_value, fmt)

            return _write_numeric

        if kind.is_temporal:
            convert_datetime = create_datetime_converter(
                cls_base if cls_base in (datetime, date) else None,
                tz_reference=self._tz_reference,
            )

            def _write_temporal(record: Any) -> SpecCellValue:
                dt_value = convert_datetime(accessor(record))
                if dt_value is None:
                    return SpecCellValue(EnumCellValueType.BLANK, None, fmt)
                return SpecCellValue(EnumCellValueType.DATETIME, dt_value, fmt)

            return _write_temporal

        def _write_general(record: Any) -> SpecCellValue:
            value = accessor(record)
            return SpecCellValue(
                EnumCellValueType.STRING, "" if value is None else str(value), fmt
            )

        return _write_general

    # #endregion
    ############################################################################
    # #region NativeType

    def _build_native_writer(self, fld: SpecResolvedField) -> TypeCellWriter:
        fmt = self._styles.style_for(fld.kind)
        accessor = fld.accessor
        cls_base = classify_native_type(fld.native_type)

        if cls_base is bool:

            def _write_boolean(record: Any) -> SpecCellValue | None:
                value = accessor(record)
                if value is None:
                    return None
                if not isinstance(value, bool):
                    raise TypeError(f"Expected bool, got {type(value).__name__}.")
                return SpecCellValue(EnumCellValueType.BOOLEAN, value, fmt)

            return _write_boolean

        if cls_base in _TUP_NUMERIC_BASES:

            def _write_number(record: Any) -> SpecCellValue | None:
                value = accessor(record)
                if value is None:
                    return None
                if isinstance(value, bool) or not isinstance(value, _TUP_NUMERIC_BASES):
                    raise TypeError(f"Expected a number, got {type(value).__name__}.")
                if isinstance(value, float) and not math.isfinite(value):
                    return SpecCellValue(EnumCellValueType.BLANK, None, fmt)
                return SpecCellValue(
                    EnumCellValueType.NUMBER,
                    float(value) if isinstance(value, decimal.Decimal) else value,
                    fmt,
                )

            return _write_number

        if cls_base in (datetime, date):
            convert_datetime = create_datetime_converter(
                cls_base, tz_reference=self._tz_reference
            )

            def _write_datetime(record: Any) -> SpecCellValue | None:
                value = accessor(record)
                if value is None:
                    return None
                if not isinstance(value, date):
                    raise TypeError(
                        f"Expected a date/datetime, got {type(value).__name__}."
                    )
                return SpecCellValue(
                    EnumCellValueType.DATETIME, convert_datetime(value), fmt
                )

            return _write_datetime

        if cls_base is None:
            logger.debug(
                f"Field `{fld.name}` has no dedicated writer for "
                f"{fld.native_type!r}; writing its text representation."
            )

        def _write_text(record: Any) -> SpecCellValue | None:
            value = accessor(record)
            if value is None:
                return None
            return SpecCellValue(
                EnumCellValueType.STRING,
                value if isinstance(value, str) else str(value),
                fmt,
            )

        return _write_text

    # #endregion
    ############################################################################


def write_cell_value(
    ws: xlsxwriter.worksheet.Worksheet,
    *,
    row_idx: int,
    col_idx: int,
    cell: SpecCellValue,
) -> int:
    """Write one cell; returns the XlsxWriter status (0 ok, -1 range, -2 truncated)."""
    match cell.value_type:
        case EnumCellValueType.STRING:
            return ws.write_string(row_idx, col_idx, cell.value, cell.fmt)
        case EnumCellValueType.NUMBER:
            return ws.write_number(row_idx, col_idx, cell.value, cell.fmt)
        case EnumCellValueType.BOOLEAN:
            return ws.write_boolean(row_idx, col_idx, cell.value, cell.fmt)
        case EnumCellValueType.DATETIME:
            return ws.write_datetime(row_idx, col_idx, cell.value, cell.fmt)
        case EnumCellValueType.BLANK:
            return ws.write_blank(row_idx, col_idx, None, cell.fmt)
    return 0
