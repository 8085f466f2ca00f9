from collections.abc import Mapping
from types import MappingProxyType

from .spec import EnumCellKind, SpecCellFormat, SpecXlsxWriteOptions

N_NROWS_EXCEL_MAX = 1_048_576
N_NCOLS_EXCEL_MAX = 16_384
N_LEN_EXCEL_SHEET_NAME_MAX = 31
TUP_EXCEL_ILLEGAL = ("*", ":", "?", "/", "\\", "[", "]")
C_XLSX_EXTENSION = ".xlsx"
# Non-zero return codes of `Worksheet.write_*`.
DICT_XLSX_WRITE_STATUS: Mapping[int, str] = MappingProxyType(
    {
        -1: "outside the worksheet limits and dropped",
        -2: "truncated to 32767 characters",
    }
)

# Strategy/Preference/Adjustable Parameters for record -> XLSX export.

N_RETENTION_DAYS_DEFAULT = 60
N_HEADING_MERGE_COLS = 6
N_HEADING_SHORT_LEN = 16
N_HEADING_FONT_SIZE_SHORT = 18
N_HEADING_FONT_SIZE_LONG = 16
C_HEADING_TIMESTAMP_PREFIX = "Generated on: "
C_SHEET_NAME_INDEX_PREFIX = "Sheet - "
C_TZ_REFERENCE = "America/New_York"
C_COLOR_ACCENT = "#000080"  # dark blue
C_COLOR_ACCENT_LINE = "#0000FF"

_cls_base_fmt_spec = SpecCellFormat(font_name="Calibri", font_size=11)
_cls_data_fmt_spec = _cls_base_fmt_spec.with_(border=1, valign="vcenter")

DEFAULT_XLSX_FORMATS: Mapping[EnumCellKind, SpecCellFormat] = MappingProxyType(
    {
        EnumCellKind.GENERAL: _cls_data_fmt_spec,
        EnumCellKind.INTEGER: _cls_data_fmt_spec.with_(num_format="#,##0"),
        EnumCellKind.DECIMAL: _cls_data_fmt_spec.with_(num_format="#,##0.00"),
        EnumCellKind.PRECISE: _cls_data_fmt_spec.with_(num_format="#,##0.0000"),
        EnumCellKind.CURRENCY: _cls_data_fmt_spec.with_(num_format="$#,##0.00"),
        EnumCellKind.PERCENT: _cls_data_fmt_spec.with_(num_format="0.00%"),
        EnumCellKind.DATE: _cls_data_fmt_spec.with_(num_format="yyyy-mm-dd"),
        EnumCellKind.DATETIME: _cls_data_fmt_spec.with_(
            num_format="yyyy-mm-dd hh:mm:ss"
        ),
    }
)

DEFAULT_HEADER_FORMAT = _cls_base_fmt_spec.with_(
    bold=True,
    font_color=C_COLOR_ACCENT,
    bottom=2,  # medium
    bottom_color=C_COLOR_ACCENT_LINE,
)
DEFAULT_HEADING_FORMAT = _cls_base_fmt_spec.with_(
    bold=True, font_color=C_COLOR_ACCENT, valign="vcenter"
)
DEFAULT_HEADING_TIMESTAMP_FORMAT = _cls_base_fmt_spec

# Fallback patterns tried (in order) once ISO-8601 parsing fails.
TUP_DATE_PATTERNS_ALTERNATE = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%y/%m/%d",
    "%m%d%y",
    "%d%m%y",
    "%b %d, %y",
    "%b %d, %Y",
    "%a, %d %b %Y %H:%M:%S %z",
)

DEFAULT_XLSX_WRITE_OPTIONS = SpecXlsxWriteOptions(
    retention_days=N_RETENTION_DAYS_DEFAULT,
    tz_reference=C_TZ_REFERENCE,
    heading_merge_cols=N_HEADING_MERGE_COLS,
)
