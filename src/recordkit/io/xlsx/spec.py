# "Facts/Plans/Results" flowing through the record -> XLSX export pipeline.

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any


################################################################################
# #region Enums
class EnumCellKind(StrEnum):
    """Closed set of semantic kinds a cell value is rendered as."""

    DEFAULT = "default"
    GENERAL = "general"
    INTEGER = "integer"
    DECIMAL = "decimal"
    PRECISE = "precise"
    CURRENCY = "currency"
    PERCENT = "percent"
    DATE = "date"
    DATETIME = "datetime"

    @property
    def is_numeric(self) -> bool:
        return self in _SET_KINDS_NUMERIC

    @property
    def is_temporal(self) -> bool:
        return self in (EnumCellKind.DATE, EnumCellKind.DATETIME)


_SET_KINDS_NUMERIC = frozenset(
    {
        EnumCellKind.INTEGER,
        EnumCellKind.DECIMAL,
        EnumCellKind.PRECISE,
        EnumCellKind.CURRENCY,
        EnumCellKind.PERCENT,
    }
)


class EnumCellValueType(StrEnum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    BLANK = "blank"


class EnumSheetStage(StrEnum):
    CREATED = "created"
    NAMED = "named"
    HEADED = "headed"
    UNHEADED = "unheaded"
    COLUMNS_ADDED = "columns_added"
    DATA_WRITTEN = "data_written"
    AUTO_SIZED = "auto_sized"
    PANES_FROZEN = "panes_frozen"
    FILTERS_ATTACHED = "filters_attached"
    DONE = "done"


# #endregion
################################################################################
# #region CellFormat
@dataclass(frozen=True, slots=True)
class SpecCellFormat:
    # 字段名严格对齐 XlsxWriter format properties keys
    font_name: str | None = None
    font_size: int | None = None
    font_color: str | None = None
    bold: bool | None = None
    italic: bool | None = None

    align: str | None = None
    valign: str | None = None
    border: int | None = None
    text_wrap: bool | None = None

    top: int | None = None
    bottom: int | None = None
    left: int | None = None
    right: int | None = None
    bottom_color: str | None = None

    num_format: str | None = None
    bg_color: str | None = None

    def with_(self, **kwargs: Any) -> "SpecCellFormat":
        return replace(self, **kwargs)

    def to_xlsxwriter(self) -> dict[str, Any]:
        return {
            k: getattr(self, k)
            for k in self.__dataclass_fields__
            if getattr(self, k) is not None
        }


@dataclass(frozen=True, slots=True)
class SpecCellValue:
    """What one cell writer produced for one record: typed content + format."""

    value_type: EnumCellValueType
    value: Any = None
    fmt: Any = None


# #endregion
################################################################################
# #region ShapeMetadata
@dataclass(frozen=True, slots=True)
class SpecSheetMeta:
    name: str = ""
    heading: str = ""


@dataclass(frozen=True, slots=True)
class SpecColumnMeta:
    header: str = ""
    index: int = 0
    kind: EnumCellKind = EnumCellKind.DEFAULT


@dataclass(frozen=True, slots=True)
class SpecResolvedField:
    """
    A shape's field after header/kind/order resolution.

    ``kind`` is the effective kind (explicit override or inferred from
    ``native_type``); ``kind_override`` keeps the explicit one, if any.
    """

    name: str
    header: str
    kind: EnumCellKind
    native_type: Any
    accessor: Callable[[Any], Any]
    kind_override: EnumCellKind | None = None

    @property
    def has_kind_override(self) -> bool:
        return (
            self.kind_override is not None
            and self.kind_override is not EnumCellKind.DEFAULT
        )


# #endregion
################################################################################
# #region SheetLayout
@dataclass(frozen=True, slots=True)
class SpecSheetLayout:
    """
    Fixed row allocation of one sheet.

    With a heading: rows 0-1 heading, row 2 spacer, row 3 header, rows 4+ data.
    Without: row 0 header, rows 1+ data.
    """

    if_has_heading: bool
    row_idx_header: int
    row_idx_data_start: int

    @classmethod
    def from_heading(cls, heading: str) -> "SpecSheetLayout":
        if heading:
            return cls(if_has_heading=True, row_idx_header=3, row_idx_data_start=4)
        return cls(if_has_heading=False, row_idx_header=0, row_idx_data_start=1)

    @property
    def n_rows_frozen(self) -> int:
        return self.row_idx_data_start


# #endregion
################################################################################
# #region WriteOptions
@dataclass(frozen=True, slots=True)
class SpecXlsxWriteOptions:
    if_constant_memory: bool = False
    retention_days: int = 60
    tz_reference: str = "America/New_York"
    heading_merge_cols: int = 6


# #endregion
################################################################################
# #region ExportReport
@dataclass(slots=True)
class SpecSheetReport:
    sheet_name: str
    n_rows_data: int = 0
    n_cols: int = 0
    n_cells_blank_on_error: int = 0
    n_cells_altered: int = 0
    stages_failed: list[EnumSheetStage] = field(default_factory=list)


@dataclass(slots=True)
class SpecXlsxReport:
    sheets: list[SpecSheetReport]
    warnings: list[str]

    def warn(self, msg: str) -> None:
        self.warnings.append(str(msg))


# #endregion
################################################################################
