"""
Per-collection sheet pipeline.

One record collection becomes one worksheet by running the stage functions of
``TUP_SHEET_STAGES`` in order over a mutable :class:`SheetBuildContext`::

    Created -> Named -> Headed|Unheaded -> ColumnsAdded -> DataWritten
            -> AutoSized -> PanesFrozen -> FiltersAttached -> Done

Every stage runs inside its own guard: a failing stage is logged with the
sheet identity and recorded on the sheet report, and the remaining stages
still run. Only a sheet that could not be materialized at all stops early.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import xlsxwriter.exceptions
import xlsxwriter.worksheet
from loguru import logger

from .conf import (
    C_HEADING_TIMESTAMP_PREFIX,
    C_SHEET_NAME_INDEX_PREFIX,
    DICT_XLSX_WRITE_STATUS,
    N_LEN_EXCEL_SHEET_NAME_MAX,
    N_NCOLS_EXCEL_MAX,
    N_NROWS_EXCEL_MAX,
    TUP_EXCEL_ILLEGAL,
)
from .resolver import (
    TypeRecordCollection,
    count_records,
    iter_records,
    resolve_collection_fields,
    resolve_collection_shape,
)
from .spec import (
    EnumSheetStage,
    SpecResolvedField,
    SpecSheetLayout,
    SpecSheetMeta,
    SpecSheetReport,
)
from .writer_factory import write_cell_value

if TYPE_CHECKING:
    from .writer import XlsxDocumentSession


################################################################################
# #region SheetNames


def sanitize_sheet_name(name: str, *, replace_to: str = "_") -> str:
    for ch in TUP_EXCEL_ILLEGAL:
        name = name.replace(ch, replace_to)
    name = name.strip().strip("'") or "Sheet"
    return name[:N_LEN_EXCEL_SHEET_NAME_MAX]


def create_unique_sheet_name(name: str, existing_names: set[str]) -> str:
    """Bump ``name`` to ``name__2``, ``name__3`` ... until unused (case-insensitive)."""
    set_existing_lower = {_name.lower() for _name in existing_names}
    if name.lower() not in set_existing_lower:
        return name

    c_base_name = name[: max(1, N_LEN_EXCEL_SHEET_NAME_MAX - 3)]
    i = 2
    c_candidate_name = f"{c_base_name}__{i}"[:N_LEN_EXCEL_SHEET_NAME_MAX]
    while c_candidate_name.lower() in set_existing_lower:
        i += 1
        c_candidate_name = f"{c_base_name}__{i}"[:N_LEN_EXCEL_SHEET_NAME_MAX]
    return c_candidate_name


def calculate_header_width(header: str) -> float:
    """Column width (in characters) proportional to the header text length."""
    return ((len(header) + 3) * 256 + 200) / 256


# #endregion
################################################################################
# #region BuildContext


@dataclass(slots=True)
class SheetBuildContext:
    session: XlsxDocumentSession
    records: TypeRecordCollection
    index: int
    report: SpecSheetReport = field(default_factory=lambda: SpecSheetReport(""))
    shape_name: str = ""
    sheet_meta: SpecSheetMeta = field(default_factory=SpecSheetMeta)
    layout: SpecSheetLayout = field(
        default_factory=lambda: SpecSheetLayout.from_heading("")
    )
    ws: xlsxwriter.worksheet.Worksheet | None = None
    fields: tuple[SpecResolvedField, ...] = ()
    row_idx_last_written: int | None = None
    col_idx_last_written: int | None = None
    stages_done: list[EnumSheetStage] = field(default_factory=list)

    @property
    def sheet_label(self) -> str:
        if self.ws is not None:
            return self.ws.get_name()
        return self.sheet_meta.name or self.shape_name or f"#{self.index}"


def _require_worksheet(ctx: SheetBuildContext) -> xlsxwriter.worksheet.Worksheet:
    if ctx.ws is None:
        raise RuntimeError("Worksheet has not been created.")
    return ctx.ws


# #endregion
################################################################################
# #region Stages


def stage_create(ctx: SheetBuildContext) -> EnumSheetStage:
    ctx.shape_name, ctx.sheet_meta = resolve_collection_shape(ctx.records)
    ctx.layout = SpecSheetLayout.from_heading(ctx.sheet_meta.heading)
    return EnumSheetStage.CREATED


def _add_worksheet_fallback(
    session: XlsxDocumentSession, title: str
) -> xlsxwriter.worksheet.Worksheet:
    wb = session.wb
    try:
        return wb.add_worksheet(title)
    except xlsxwriter.exceptions.XlsxWriterException as e:
        logger.warning(f"Sheet title {title!r} rejected ({e}); sanitizing it.")

    c_title_safe = create_unique_sheet_name(
        sanitize_sheet_name(title),
        {_ws.get_name() for _ws in wb.worksheets()},
    )
    try:
        return wb.add_worksheet(c_title_safe)
    except xlsxwriter.exceptions.XlsxWriterException as e:
        logger.warning(
            f"Sanitized sheet title {c_title_safe!r} rejected ({e}); "
            "using the default title."
        )
    return wb.add_worksheet()


def stage_name(ctx: SheetBuildContext) -> EnumSheetStage:
    c_title = (
        ctx.sheet_meta.name
        or ctx.shape_name
        or f"{C_SHEET_NAME_INDEX_PREFIX}{len(ctx.session.wb.worksheets())}"
    )
    ctx.ws = _add_worksheet_fallback(ctx.session, c_title)
    ctx.report.sheet_name = ctx.ws.get_name()
    return EnumSheetStage.NAMED


def stage_heading(ctx: SheetBuildContext) -> EnumSheetStage:
    if not ctx.layout.if_has_heading:
        return EnumSheetStage.UNHEADED

    ws = _require_worksheet(ctx)
    styles = ctx.session.styles
    c_heading = ctx.sheet_meta.heading
    c_timestamp = (
        C_HEADING_TIMESTAMP_PREFIX
        + datetime.now(ctx.session.tz_reference).strftime("%Y-%m-%d %H:%M:%S")
    )
    n_col_idx_last = max(1, ctx.session.options.heading_merge_cols) - 1

    for _row_idx, _text, _fmt in (
        (0, c_heading, styles.heading_format(c_heading)),
        (1, c_timestamp, styles.fmt_heading_timestamp),
    ):
        if n_col_idx_last > 0:
            ws.merge_range(_row_idx, 0, _row_idx, n_col_idx_last, _text, _fmt)
        else:
            ws.write_string(_row_idx, 0, _text, _fmt)
    # row 2 stays empty as spacer
    return EnumSheetStage.HEADED


def stage_columns(ctx: SheetBuildContext) -> EnumSheetStage:
    ws = _require_worksheet(ctx)
    tup_fields = resolve_collection_fields(ctx.records)
    if len(tup_fields) > N_NCOLS_EXCEL_MAX:
        c_msg = (
            f"Sheet `{ctx.sheet_label}` has {len(tup_fields)} fields; only the first "
            f"{N_NCOLS_EXCEL_MAX} fit and are written."
        )
        logger.warning(c_msg)
        ctx.session.report.warn(c_msg)
        tup_fields = tup_fields[:N_NCOLS_EXCEL_MAX]
    ctx.fields = tup_fields
    n_row_idx_header = ctx.layout.row_idx_header
    fmt_header = ctx.session.styles.fmt_header

    for _col_idx, _fld in enumerate(ctx.fields):
        ws.write_string(n_row_idx_header, _col_idx, _fld.header, fmt_header)
        ws.set_column(_col_idx, _col_idx, calculate_header_width(_fld.header))

    ctx.report.n_cols = len(ctx.fields)
    return EnumSheetStage.COLUMNS_ADDED


def stage_data(ctx: SheetBuildContext) -> EnumSheetStage:
    ws = _require_worksheet(ctx)
    if not ctx.fields:
        logger.warning(f"Sheet `{ctx.sheet_label}` has no columns; skipping data.")
        return EnumSheetStage.DATA_WRITTEN

    factory = ctx.session.writers
    tup_writers = tuple(
        (_col_idx, factory.writer_for(_fld), _fld)
        for _col_idx, _fld in enumerate(ctx.fields)
    )
    n_row_idx_start = ctx.layout.row_idx_data_start
    n_rows_capacity = N_NROWS_EXCEL_MAX - n_row_idx_start
    n_records = count_records(ctx.records)
    if n_records > n_rows_capacity:
        c_msg = (
            f"Sheet `{ctx.sheet_label}` holds {n_records} records; only the first "
            f"{n_rows_capacity} fit and are written."
        )
        logger.warning(c_msg)
        ctx.session.report.warn(c_msg)

    n_rows_written = 0
    for _row_offset, _record in enumerate(iter_records(ctx.records)):
        if _row_offset >= n_rows_capacity:
            break
        n_row_idx_ = n_row_idx_start + _row_offset
        n_col_idx_last_ = None
        for _col_idx, _writer, _fld in tup_writers:
            try:
                cell_ = _writer(_record)
                if cell_ is None:
                    continue
                n_status_ = write_cell_value(
                    ws, row_idx=n_row_idx_, col_idx=_col_idx, cell=cell_
                )
                if n_status_ != 0:
                    c_reason_ = DICT_XLSX_WRITE_STATUS.get(
                        n_status_, f"rejected with status {n_status_}"
                    )
                    c_msg = (
                        f"Cell at row {n_row_idx_}, column {_col_idx} (`{_fld.name}`) "
                        f"of sheet `{ctx.sheet_label}` was {c_reason_}."
                    )
                    logger.warning(c_msg)
                    ctx.session.report.warn(c_msg)
                    ctx.report.n_cells_altered += 1
            except Exception as e:
                logger.warning(
                    f"Cell write failed at row {n_row_idx_}, column {_col_idx} "
                    f"(`{_fld.name}`) of sheet `{ctx.sheet_label}`: {e}"
                )
                ws.write_blank(
                    n_row_idx_, _col_idx, None, ctx.session.styles.style_for(_fld.kind)
                )
                ctx.report.n_cells_blank_on_error += 1
            n_col_idx_last_ = _col_idx
        ctx.row_idx_last_written = n_row_idx_
        ctx.col_idx_last_written = n_col_idx_last_
        n_rows_written += 1

    ctx.report.n_rows_data = n_rows_written
    return EnumSheetStage.DATA_WRITTEN


def stage_autosize(ctx: SheetBuildContext) -> EnumSheetStage:
    ws = _require_worksheet(ctx)
    if ws.constant_memory:
        logger.warning(
            f"Sheet `{ctx.sheet_label}` is written in constant-memory mode; "
            "rows are not randomly accessible, so auto-sizing is skipped."
        )
        return EnumSheetStage.AUTO_SIZED
    ws.autofit()
    return EnumSheetStage.AUTO_SIZED


def stage_freeze(ctx: SheetBuildContext) -> EnumSheetStage:
    ws = _require_worksheet(ctx)
    ws.freeze_panes(ctx.layout.n_rows_frozen, 0)
    return EnumSheetStage.PANES_FROZEN


def stage_filters(ctx: SheetBuildContext) -> EnumSheetStage:
    ws = _require_worksheet(ctx)
    if not ctx.fields:
        logger.debug(f"Sheet `{ctx.sheet_label}` has no columns; no auto-filter.")
        return EnumSheetStage.FILTERS_ATTACHED

    n_col_idx_last = (
        ctx.col_idx_last_written
        if ctx.col_idx_last_written is not None
        else len(ctx.fields) - 1
    )
    n_row_idx_header = ctx.layout.row_idx_header
    ws.autofilter(n_row_idx_header, 0, n_row_idx_header, n_col_idx_last)
    return EnumSheetStage.FILTERS_ATTACHED


TypeSheetStage = Callable[[SheetBuildContext], EnumSheetStage]

# (stage reached on success, stage function). Headed/Unheaded is decided at run time.
TUP_SHEET_STAGES: tuple[tuple[EnumSheetStage, TypeSheetStage], ...] = (
    (EnumSheetStage.CREATED, stage_create),
    (EnumSheetStage.NAMED, stage_name),
    (EnumSheetStage.HEADED, stage_heading),
    (EnumSheetStage.COLUMNS_ADDED, stage_columns),
    (EnumSheetStage.DATA_WRITTEN, stage_data),
    (EnumSheetStage.AUTO_SIZED, stage_autosize),
    (EnumSheetStage.PANES_FROZEN, stage_freeze),
    (EnumSheetStage.FILTERS_ATTACHED, stage_filters),
)


# #endregion
################################################################################
# #region Pipeline


def build_sheet(
    session: XlsxDocumentSession,
    records: TypeRecordCollection,
    *,
    index: int,
    stages: tuple[tuple[EnumSheetStage, TypeSheetStage], ...] = TUP_SHEET_STAGES,
) -> SheetBuildContext:
    """
    Run every stage for one non-empty record collection.

    Returns the final context; ``ctx.stages_done`` lists the states reached and
    ``ctx.report.stages_failed`` the stages that raised.
    """
    ctx = SheetBuildContext(session=session, records=records, index=index)
    for _stage, _run in stages:
        if ctx.ws is None and _stage not in (
            EnumSheetStage.CREATED,
            EnumSheetStage.NAMED,
        ):
            logger.error(
                f"Sheet `{ctx.sheet_label}` was never created; "
                f"abandoning it before stage `{_stage}`."
            )
            ctx.report.stages_failed.append(_stage)
            break
        try:
            ctx.stages_done.append(_run(ctx))
        except Exception as e:
            logger.error(f"Stage `{_stage}` failed for sheet `{ctx.sheet_label}`: {e}")
            ctx.report.stages_failed.append(_stage)
    else:
        ctx.stages_done.append(EnumSheetStage.DONE)
    return ctx


def summarize_sheet(ctx: SheetBuildContext) -> dict[str, Any]:
    return {
        "sheet": ctx.sheet_label,
        "rows": ctx.report.n_rows_data,
        "cols": ctx.report.n_cols,
        "blank_on_error": ctx.report.n_cells_blank_on_error,
        "altered": ctx.report.n_cells_altered,
        "stages_failed": [str(_s) for _s in ctx.report.stages_failed],
    }


# #endregion
################################################################################
