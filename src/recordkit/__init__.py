"""
Declarative export of in-memory record collections to styled ``.xlsx`` files.

The public entry points are re-exported lazily so that ``import recordkit``
works without the ``xlsx`` extra installed::

    import recordkit

    path_out = recordkit.write_records(l_orders, l_customers, file_name="daily")
"""

from __future__ import annotations

from importlib import import_module
from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING, Any

__all__ = [
    "__version__",
    "io_xlsx",
    "io_fs",
    "XlsxRecordWriter",
    "write_records",
    "xlsx_sheet",
    "xlsx_column",
]

try:
    __version__ = version("recordkit")
except PackageNotFoundError:
    __version__ = "0.0.0"

if TYPE_CHECKING:
    import recordkit.io.fs as io_fs
    import recordkit.io.xlsx as io_xlsx
    from recordkit.io.xlsx import (
        XlsxRecordWriter,
        write_records,
        xlsx_column,
        xlsx_sheet,
    )

_ALIAS_MODULES: dict[str, str] = {
    "io_xlsx": "recordkit.io.xlsx",
    "io_fs": "recordkit.io.fs",
}
_SET_XLSX_EXPORTS = frozenset(
    {"XlsxRecordWriter", "write_records", "xlsx_sheet", "xlsx_column"}
)


def __getattr__(name: str) -> Any:
    if name in _SET_XLSX_EXPORTS:
        value = getattr(import_module("recordkit.io.xlsx"), name)
    elif name in _ALIAS_MODULES:
        value = import_module(_ALIAS_MODULES[name])
    else:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
