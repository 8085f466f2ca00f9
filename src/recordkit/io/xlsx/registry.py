from collections.abc import Mapping
from types import MappingProxyType

import xlsxwriter
import xlsxwriter.format

from .conf import (
    DEFAULT_HEADER_FORMAT,
    DEFAULT_HEADING_FORMAT,
    DEFAULT_HEADING_TIMESTAMP_FORMAT,
    DEFAULT_XLSX_FORMATS,
    N_HEADING_FONT_SIZE_LONG,
    N_HEADING_FONT_SIZE_SHORT,
    N_HEADING_SHORT_LEN,
)
from .spec import EnumCellKind, SpecCellFormat


class XlsxStyleRegistry:
    """
    Pre-built cell formats of one workbook, keyed by :class:`EnumCellKind`.

    Every kind of the closed set is materialized on construction; the mapping
    is read-only afterwards. ``EnumCellKind.DEFAULT`` resolves to ``GENERAL``.
    """

    def __init__(
        self,
        wb: xlsxwriter.Workbook,
        *,
        formats: Mapping[EnumCellKind, SpecCellFormat] = DEFAULT_XLSX_FORMATS,
        fmt_header: SpecCellFormat = DEFAULT_HEADER_FORMAT,
        fmt_heading: SpecCellFormat = DEFAULT_HEADING_FORMAT,
        fmt_heading_timestamp: SpecCellFormat = DEFAULT_HEADING_TIMESTAMP_FORMAT,
    ):
        self._wb = wb
        self._format_cache: dict[SpecCellFormat, xlsxwriter.format.Format] = {}

        l_kinds_missing = [
            _kind.value
            for _kind in EnumCellKind
            if _kind is not EnumCellKind.DEFAULT and _kind not in formats
        ]
        if l_kinds_missing:
            raise ValueError(f"Missing cell formats for kinds: {l_kinds_missing}")

        self._styles_by_kind: Mapping[EnumCellKind, xlsxwriter.format.Format] = (
            MappingProxyType(
                {
                    _kind: self._create_format_cached(formats[_kind])
                    for _kind in EnumCellKind
                    if _kind is not EnumCellKind.DEFAULT
                }
            )
        )
        self.fmt_header = self._create_format_cached(fmt_header)
        self._fmt_heading_spec = fmt_heading
        self.fmt_heading_timestamp = self._create_format_cached(fmt_heading_timestamp)

    def _create_format_cached(self, spec: SpecCellFormat) -> xlsxwriter.format.Format:
        fmt = self._format_cache.get(spec)
        if fmt is None:
            fmt = self._wb.add_format(spec.to_xlsxwriter())
            self._format_cache[spec] = fmt
        return fmt

    def style_for(self, kind: EnumCellKind) -> xlsxwriter.format.Format:
        if kind is EnumCellKind.DEFAULT:
            kind = EnumCellKind.GENERAL
        return self._styles_by_kind[kind]

    def heading_format(self, heading: str) -> xlsxwriter.format.Format:
        """Heading font shrinks a little for long headings."""
        n_font_size = (
            N_HEADING_FONT_SIZE_SHORT
            if len(heading) < N_HEADING_SHORT_LEN
            else N_HEADING_FONT_SIZE_LONG
        )
        return self._create_format_cached(
            self._fmt_heading_spec.with_(font_size=n_font_size)
        )

    @property
    def kinds(self) -> tuple[EnumCellKind, ...]:
        return tuple(self._styles_by_kind)
