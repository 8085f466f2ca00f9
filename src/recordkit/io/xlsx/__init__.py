from __future__ import annotations

from typing import TYPE_CHECKING, Any

from recordkit._optional_deps import FEATURE_IO_XLSX, import_optional_attr

__all__ = [
    "XlsxRecordWriter",
    "XlsxDocumentSession",
    "write_records",
    "get_storage",
    "set_storage",
    "xlsx_sheet",
    "xlsx_column",
    "EnumCellKind",
    "SpecCellFormat",
    "SpecColumnMeta",
    "SpecSheetMeta",
    "SpecXlsxReport",
    "SpecXlsxWriteOptions",
    "derive_header",
    "resolve_shape_fields",
    "parse_timestamp",
]

if TYPE_CHECKING:
    from .metadata import xlsx_column, xlsx_sheet
    from .resolver import derive_header, resolve_shape_fields
    from .spec import (
        EnumCellKind,
        SpecCellFormat,
        SpecColumnMeta,
        SpecSheetMeta,
        SpecXlsxReport,
        SpecXlsxWriteOptions,
    )
    from .value_conversion import parse_timestamp
    from .writer import (
        XlsxDocumentSession,
        XlsxRecordWriter,
        get_storage,
        set_storage,
        write_records,
    )

_DICT_ATTR_MODULES: dict[str, str] = {
    "XlsxRecordWriter": ".writer",
    "XlsxDocumentSession": ".writer",
    "write_records": ".writer",
    "get_storage": ".writer",
    "set_storage": ".writer",
    "xlsx_sheet": ".metadata",
    "xlsx_column": ".metadata",
    "EnumCellKind": ".spec",
    "SpecCellFormat": ".spec",
    "SpecColumnMeta": ".spec",
    "SpecSheetMeta": ".spec",
    "SpecXlsxReport": ".spec",
    "SpecXlsxWriteOptions": ".spec",
    "derive_header": ".resolver",
    "resolve_shape_fields": ".resolver",
    "parse_timestamp": ".value_conversion",
}


def __getattr__(name: str) -> Any:
    module_name = _DICT_ATTR_MODULES.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    value = import_optional_attr(
        module_name, name, package=__name__, spec=FEATURE_IO_XLSX
    )
    globals()[name] = value
    return value
