"""
Declaration surface for shape metadata.

A record shape opts into explicit sheet/column configuration with::

    @xlsx_sheet(name="Staff", heading="Staff Directory")
    @dataclass
    class Employee:
        name: str = xlsx_column(header="Full Name")
        salary: float = xlsx_column(kind="currency")
        note: str = ""

or, on any annotated class, with ``Annotated[float, SpecColumnMeta(...)]``.
Only the resolved values matter downstream (see ``resolver``).
"""

import dataclasses
from collections.abc import Callable
from typing import Annotated, Any, TypeVar, get_args, get_origin

from .spec import EnumCellKind, SpecColumnMeta, SpecSheetMeta

C_FIELD_META_KEY = "recordkit.xlsx.column"
C_SHEET_META_ATTR = "__recordkit_xlsx_sheet__"

_T = TypeVar("_T", bound=type)


def xlsx_sheet(
    _cls: _T | None = None, *, name: str = "", heading: str = ""
) -> _T | Callable[[_T], _T]:
    """Attach a sheet name and an optional heading to a record shape."""

    def _wrap(cls: _T) -> _T:
        setattr(cls, C_SHEET_META_ATTR, SpecSheetMeta(name=name, heading=heading))
        return cls

    return _wrap if _cls is None else _wrap(_cls)


def xlsx_column(
    *,
    header: str = "",
    index: int = 0,
    kind: EnumCellKind | str = EnumCellKind.DEFAULT,
    **field_kwargs: Any,
) -> Any:
    """
    Declare a dataclass field as an exported column.

    Extra keyword arguments (``default``, ``default_factory``, ``repr`` ...)
    are forwarded to :func:`dataclasses.field`.
    """
    dict_metadata = dict(field_kwargs.pop("metadata", None) or {})
    dict_metadata[C_FIELD_META_KEY] = create_column_meta(
        header=header, index=index, kind=kind
    )
    return dataclasses.field(metadata=dict_metadata, **field_kwargs)


def create_column_meta(
    *,
    header: str = "",
    index: int = 0,
    kind: EnumCellKind | str = EnumCellKind.DEFAULT,
) -> SpecColumnMeta:
    if isinstance(index, bool) or not isinstance(index, int):
        raise TypeError(f"Column index must be an int, got {index!r}.")
    try:
        enum_kind = EnumCellKind(kind)
    except ValueError as e:
        raise ValueError(
            f"Invalid cell kind: `{kind}`. "
            f"Expected one of: {[s.value for s in EnumCellKind]}"
        ) from e
    return SpecColumnMeta(header=header or "", index=index, kind=enum_kind)


def get_sheet_meta(shape: type) -> SpecSheetMeta:
    meta = getattr(shape, C_SHEET_META_ATTR, None)
    return meta if isinstance(meta, SpecSheetMeta) else SpecSheetMeta()


def get_field_column_meta(fld: dataclasses.Field[Any]) -> SpecColumnMeta | None:
    meta = fld.metadata.get(C_FIELD_META_KEY)
    return meta if isinstance(meta, SpecColumnMeta) else None


def split_annotated(annotation: Any) -> tuple[Any, SpecColumnMeta | None]:
    """Return ``(underlying_type, column_meta)`` for a possibly ``Annotated`` hint."""
    if get_origin(annotation) is not Annotated:
        return annotation, None
    tup_args = get_args(annotation)
    for _extra in tup_args[1:]:
        if isinstance(_extra, SpecColumnMeta):
            return tup_args[0], _extra
    return tup_args[0], None
