import os
import tempfile
import threading
import time
from collections.abc import Sequence
from pathlib import Path
from types import TracebackType
from typing import Any
from zoneinfo import ZoneInfoNotFoundError

import xlsxwriter
from loguru import logger

from ..fs.retention import delete_files_older_than
from .conf import C_XLSX_EXTENSION, DEFAULT_XLSX_WRITE_OPTIONS
from .registry import XlsxStyleRegistry
from .resolver import TypeRecordCollection, count_records, normalize_collection
from .sheet_builder import SheetBuildContext, build_sheet, summarize_sheet
from .spec import SpecXlsxReport, SpecXlsxWriteOptions
from .value_conversion import get_reference_tz
from .writer_factory import CellWriterFactory

# One export at a time may populate and serialize a document.
_LOCK_EXPORT = threading.Lock()
_dir_storage_override: Path | None = None


################################################################################
# #region StorageConfig


def get_storage() -> Path:
    """Process-wide output/retention directory (system temp dir unless set)."""
    if _dir_storage_override is not None:
        return _dir_storage_override
    return Path(tempfile.gettempdir())


def set_storage(dir_storage: os.PathLike[str] | str | None) -> None:
    """Override the process-wide storage directory; empty/``None`` resets it."""
    global _dir_storage_override
    _dir_storage_override = Path(dir_storage) if dir_storage else None


def normalize_file_name(file_name: str | None) -> str:
    """Default to a millisecond timestamp and append ``.xlsx`` when missing."""
    c_name = (file_name or "").strip() or str(int(time.time() * 1000))
    if not c_name.lower().endswith(C_XLSX_EXTENSION):
        c_name += C_XLSX_EXTENSION
    return c_name


def validate_write_options(options: SpecXlsxWriteOptions) -> SpecXlsxWriteOptions:
    if options.retention_days < 0:
        raise ValueError(
            f"retention_days must be >= 0, got {options.retention_days}."
        )
    if options.heading_merge_cols < 1:
        raise ValueError(
            f"heading_merge_cols must be >= 1, got {options.heading_merge_cols}."
        )
    try:
        get_reference_tz(options.tz_reference)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown time zone: `{options.tz_reference}`.") from e
    return options


# #endregion
################################################################################
# #region DocumentSession


class XlsxDocumentSession:
    """
    One in-progress document: workbook, pre-built styles and cell writers.

    A session is created for exactly one export and discarded afterwards;
    nothing it builds (formats, writers, sheet names) outlives it.

    Parameters
    ----------
    file_out:
        Where :meth:`close` serializes the workbook.
    options:
        Write options; ``if_constant_memory`` makes every sheet streaming.
    """

    def __init__(
        self,
        file_out: os.PathLike[str] | str,
        *,
        options: SpecXlsxWriteOptions = DEFAULT_XLSX_WRITE_OPTIONS,
    ):
        self.file_out = Path(file_out)
        self.options = options
        self.tz_reference = get_reference_tz(options.tz_reference)
        self.wb = xlsxwriter.Workbook(
            self.file_out.as_posix(),
            {
                "constant_memory": options.if_constant_memory,
                "nan_inf_to_errors": False,
            },
        )
        self.styles = XlsxStyleRegistry(self.wb)
        self.writers = CellWriterFactory(self.styles, tz_reference=self.tz_reference)
        self.report = SpecXlsxReport(sheets=[], warnings=[])
        self._if_closed = False

    def __enter__(self) -> "XlsxDocumentSession":
        return self

    def __exit__(
        self, exc_type: type | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._if_closed:
            return
        self._if_closed = True
        self.wb.close()

    def add_collection(self, records: TypeRecordCollection) -> SheetBuildContext:
        ctx = build_sheet(self, records, index=len(self.report.sheets) + 1)
        self.report.sheets.append(ctx.report)
        logger.info(f"Sheet written: {summarize_sheet(ctx)}")
        return ctx

    def populate(self, collections: Sequence[TypeRecordCollection]) -> SpecXlsxReport:
        for _records in collections:
            self.add_collection(_records)
        return self.report


# #endregion
################################################################################
# #region RecordWriter


class XlsxRecordWriter:
    """
    Export record collections (one sheet each) to a single ``.xlsx`` file.

    Collections may be sequences of dataclass instances, annotated objects,
    mappings, or polars DataFrames. ``None`` and empty collections are
    dropped; if nothing remains, no file is written and ``write`` returns
    ``None``::

        from recordkit.io.xlsx import XlsxRecordWriter

        path_out = XlsxRecordWriter("/data/exports").write(
            l_agents, l_invoices, file_name="agents"
        )

    Every call builds a fresh document, writes it to a temporary sibling and
    atomically replaces the target. Afterwards, ``*.xlsx`` files older than
    ``options.retention_days`` are swept from the storage directory.

    Parameters
    ----------
    dir_storage:
        Default output and retention directory; falls back to
        :func:`get_storage` when omitted.
    options:
        :class:`SpecXlsxWriteOptions`; validated eagerly.
    """

    def __init__(
        self,
        dir_storage: os.PathLike[str] | str | None = None,
        *,
        options: SpecXlsxWriteOptions | None = None,
    ):
        self._dir_storage = Path(dir_storage) if dir_storage else None
        self.options = validate_write_options(options or DEFAULT_XLSX_WRITE_OPTIONS)
        self._reports: list[SpecXlsxReport] = []

    @property
    def dir_storage(self) -> Path:
        return self._dir_storage if self._dir_storage is not None else get_storage()

    def report(self) -> tuple[SpecXlsxReport, ...]:
        return tuple(self._reports)

    def write(
        self,
        *collections: Any,
        file_name: str | None = None,
        dir_out: os.PathLike[str] | str | None = None,
    ) -> Path | None:
        l_collections = [normalize_collection(_c) for _c in collections]
        l_non_empty = [_c for _c in l_collections if count_records(_c) > 0]
        if not l_non_empty:
            logger.info("No records to export; no file written.")
            return None

        path_out = (
            Path(dir_out) if dir_out else self.dir_storage
        ) / normalize_file_name(file_name)

        with _LOCK_EXPORT:
            try:
                return self._export(l_non_empty, path_out)
            finally:
                self._sweep_storage()

    def _export(
        self, collections: Sequence[TypeRecordCollection], path_out: Path
    ) -> Path | None:
        path_tmp: Path | None = None
        try:
            path_out.parent.mkdir(parents=True, exist_ok=True)
            fd, c_path_tmp = tempfile.mkstemp(
                prefix=f".{path_out.stem}.", suffix=".part", dir=path_out.parent
            )
            os.close(fd)
            path_tmp = Path(c_path_tmp)

            with XlsxDocumentSession(path_tmp, options=self.options) as session:
                self._reports.append(session.populate(collections))

            if path_out.exists():
                logger.info(f"Replacing existing file `{path_out}`.")
            os.replace(path_tmp, path_out)
        except Exception as e:
            logger.error(f"Failed to write `{path_out}`: {e}")
            if path_tmp is not None:
                path_tmp.unlink(missing_ok=True)
            return None

        logger.success(
            f"Exported {len(collections)} sheet(s) to `{path_out}`."
        )
        return path_out

    def _sweep_storage(self) -> None:
        try:
            n_deleted = delete_files_older_than(
                self.dir_storage,
                self.options.retention_days,
                patterns=(f"*{C_XLSX_EXTENSION}",),
            )
        except Exception as e:
            logger.error(f"Retention sweep of `{self.dir_storage}` failed: {e}")
            return
        if n_deleted:
            logger.info(
                f"Deleted {n_deleted} file(s) older than "
                f"{self.options.retention_days} day(s) from `{self.dir_storage}`."
            )


def write_records(
    *collections: Any,
    file_name: str | None = None,
    dir_out: os.PathLike[str] | str | None = None,
    options: SpecXlsxWriteOptions | None = None,
) -> Path | None:
    """Functional form of :meth:`XlsxRecordWriter.write` using the global storage."""
    return XlsxRecordWriter(options=options).write(
        *collections, file_name=file_name, dir_out=dir_out
    )


# #endregion
################################################################################
