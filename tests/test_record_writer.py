from __future__ import annotations

import os
import sys
import tempfile
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import polars as pl
import pytest
import xlsxwriter.worksheet

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from recordkit.io.xlsx import (  # noqa: E402
    SpecXlsxWriteOptions,
    XlsxDocumentSession,
    XlsxRecordWriter,
    get_storage,
    set_storage,
    write_records,
    xlsx_column,
    xlsx_sheet,
)
from recordkit.io.xlsx.spec import EnumSheetStage  # noqa: E402
from xlsx_probe import (  # noqa: E402
    read_autofilter,
    read_cells,
    read_col_widths,
    read_data_row_indices,
    read_fonts_by_style,
    read_frozen_rows,
    read_merges,
    read_num_formats_by_style,
    read_row_values,
    read_sheet_names,
)


@dataclass
class ShapeA:
    alpha: str | None
    beta: int
    gamma: float


@dataclass
class ShapeB:
    note: str
    first: str = xlsx_column(header="X", index=0)
    second: int = xlsx_column(header="Y", index=1)


@xlsx_sheet(name="Staff", heading="Staff Directory")
@dataclass
class Employee:
    name: str
    salary: float


@dataclass
class Ledger:
    count: int = xlsx_column(index=0)
    ratio: float = xlsx_column(index=1)
    share: float = xlsx_column(index=2, kind="percent")
    fee: str = xlsx_column(index=3, kind="currency")
    booked: str = xlsx_column(index=4, kind="datetime")
    day: date = xlsx_column(index=5)
    price: Decimal = xlsx_column(index=6)


@xlsx_sheet(name="Q1/Q2: [draft]")
@dataclass
class Draft:
    title: str


@dataclass
class Note:
    title: str
    body: str


@pytest.fixture
def storage(tmp_path: Path) -> Iterator[Path]:
    set_storage(tmp_path)
    yield tmp_path
    set_storage(None)


def _make_a(n: int) -> list[ShapeA]:
    return [ShapeA(f"a{_i}", _i, _i + 0.5) for _i in range(1, n + 1)]


def _list_part_files(path_dir: Path) -> list[Path]:
    return [_p for _p in path_dir.iterdir() if _p.name.endswith(".part")]


def test_two_collections_become_two_sheets(tmp_path: Path) -> None:
    path_out = XlsxRecordWriter(tmp_path).write(
        _make_a(2), [ShapeB(note="ignored", first="f", second=9)], file_name="report"
    )

    assert path_out == tmp_path / "report.xlsx"
    assert read_sheet_names(path_out) == ["Shape A", "Shape B"]

    cells_a = read_cells(path_out, 1)
    assert read_row_values(cells_a, 0) == ["Alpha", "Beta", "Gamma"]
    assert read_data_row_indices(cells_a) == [0, 1, 2]
    assert read_row_values(cells_a, 1) == ["a1", "1", "1.5"]
    assert read_row_values(cells_a, 2) == ["a2", "2", "2.5"]

    cells_b = read_cells(path_out, 2)
    assert read_row_values(cells_b, 0) == ["X", "Y"]
    assert read_data_row_indices(cells_b) == [0, 1]
    assert read_row_values(cells_b, 1) == ["f", "9"]

    assert read_frozen_rows(path_out, 1) == 1
    assert read_autofilter(path_out, 1) == "A1:C1"
    assert read_autofilter(path_out, 2) == "A1:B1"
    assert _list_part_files(tmp_path) == []


def test_heading_block_shifts_header_and_data_rows(tmp_path: Path) -> None:
    l_staff = [Employee("Ann", 1.0), Employee("Bob", 2.0), Employee("Cy", 3.0)]
    path_out = XlsxRecordWriter(tmp_path).write(l_staff, file_name="staff")
    assert path_out is not None

    assert read_sheet_names(path_out) == ["Staff"]
    cells = read_cells(path_out)
    assert read_data_row_indices(cells) == [0, 1, 3, 4, 5, 6]
    assert cells[(0, 0)].value == "Staff Directory"
    assert str(cells[(1, 0)].value).startswith("Generated on: ")
    assert read_row_values(cells, 3) == ["Name", "Salary"]
    assert [cells[(_row, 0)].value for _row in (4, 5, 6)] == ["Ann", "Bob", "Cy"]

    assert read_merges(path_out) == ["A1:F1", "A2:F2"]
    assert read_frozen_rows(path_out) == 4
    assert read_autofilter(path_out) == "A4:B4"

    l_fonts = read_fonts_by_style(path_out)
    assert l_fonts[cells[(0, 0)].style_idx]["size"] == "18"
    assert l_fonts[cells[(0, 0)].style_idx]["bold"] == "1"
    assert l_fonts[cells[(3, 0)].style_idx]["bold"] == "1"
    assert l_fonts[cells[(3, 0)].style_idx]["color"] == "FF000080"


def test_cells_carry_the_number_format_of_their_kind(tmp_path: Path) -> None:
    ledger = Ledger(
        count=3,
        ratio=0.5,
        share=0.25,
        fee="12.5",
        booked="2024-01-02 03:04:05",
        day=date(2024, 1, 2),
        price=Decimal("9.99"),
    )
    path_out = XlsxRecordWriter(tmp_path).write([ledger], file_name="ledger")
    assert path_out is not None

    cells = read_cells(path_out)
    l_num_formats = read_num_formats_by_style(path_out)
    assert [l_num_formats[cells[(1, _col)].style_idx] for _col in range(7)] == [
        "#,##0",
        "#,##0.0000",
        "0.00%",
        "$#,##0.00",
        "yyyy-mm-dd hh:mm:ss",
        "yyyy-mm-dd",
        "#,##0.00",
    ]
    assert cells[(1, 3)].value == "12.5"
    assert cells[(1, 6)].value == "9.99"
    # 2024-01-02 is Excel serial 45293
    assert str(cells[(1, 5)].value) == "45293"
    assert str(cells[(1, 4)].value).startswith("45293.12")


def test_bad_cell_is_left_blank_without_aborting(tmp_path: Path) -> None:
    l_records = [ShapeA("ok", 1, 1.0), ShapeA("bad", "oops", 2.0)]  # type: ignore[arg-type]
    writer = XlsxRecordWriter(tmp_path)
    path_out = writer.write(l_records, file_name="partial")
    assert path_out is not None

    cells = read_cells(path_out)
    assert cells[(2, 1)].value is None
    assert read_row_values(cells, 2) == ["bad", None, "2"]
    assert read_row_values(cells, 1) == ["ok", "1", "1"]

    report_sheet = writer.report()[-1].sheets[0]
    assert report_sheet.n_cells_blank_on_error == 1
    assert report_sheet.n_rows_data == 2
    assert report_sheet.stages_failed == []


def test_null_values_are_not_written(tmp_path: Path) -> None:
    path_out = XlsxRecordWriter(tmp_path).write([ShapeA(None, 1, 1.0)])
    assert path_out is not None

    cells = read_cells(path_out)
    assert (1, 0) not in cells
    assert read_row_values(cells, 1) == ["1", "1"]


def test_over_long_text_is_reported_when_truncated(tmp_path: Path) -> None:
    writer = XlsxRecordWriter(tmp_path)
    path_out = writer.write([Note("long", "x" * 40_000)], file_name="long")
    assert path_out is not None

    cells = read_cells(path_out)
    assert cells[(1, 0)].value == "long"
    assert len(cells[(1, 1)].value or "") == 32_767

    report = writer.report()[-1]
    assert report.sheets[0].n_cells_altered == 1
    assert report.sheets[0].n_cells_blank_on_error == 0
    assert any("truncated" in _w and "`body`" in _w for _w in report.warnings)


def test_session_is_closed_when_populating_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    l_closed: list[Path] = []
    fn_close = XlsxDocumentSession.close

    def _close(self: XlsxDocumentSession) -> None:
        l_closed.append(self.file_out)
        fn_close(self)

    def _populate(self: XlsxDocumentSession, collections: Any) -> Any:
        raise RuntimeError("populate failed")

    monkeypatch.setattr(XlsxDocumentSession, "close", _close)
    monkeypatch.setattr(XlsxDocumentSession, "populate", _populate)

    assert XlsxRecordWriter(tmp_path).write(_make_a(1), file_name="boom") is None
    assert len(l_closed) == 1
    assert _list_part_files(tmp_path) == []
    assert not (tmp_path / "boom.xlsx").exists()


def test_failing_sheet_does_not_abort_sibling_sheets(tmp_path: Path) -> None:
    writer = XlsxRecordWriter(tmp_path)
    path_out = writer.write([1, 2], _make_a(1), file_name="mixed")
    assert path_out is not None

    assert read_sheet_names(path_out) == ["Int", "Shape A"]
    report = writer.report()[-1]
    assert report.sheets[0].stages_failed == [EnumSheetStage.COLUMNS_ADDED]
    assert report.sheets[1].stages_failed == []
    assert read_row_values(read_cells(path_out, 2), 0) == ["Alpha", "Beta", "Gamma"]


@pytest.mark.parametrize(
    "collections",
    [(), ([],), (None, []), (pl.DataFrame(),), ((),)],
)
def test_empty_input_writes_nothing(storage: Path, collections: tuple[Any, ...]) -> None:
    path_old = storage / "ancient.xlsx"
    path_old.write_bytes(b"x")
    os.utime(path_old, (0, 0))

    assert XlsxRecordWriter().write(*collections, file_name="nothing") is None
    assert sorted(_p.name for _p in storage.iterdir()) == ["ancient.xlsx"]


def test_existing_file_is_replaced(tmp_path: Path) -> None:
    writer = XlsxRecordWriter(tmp_path)
    path_first = writer.write(_make_a(3), file_name="same")
    path_second = writer.write(_make_a(1), file_name="same.xlsx")

    assert path_first == path_second == tmp_path / "same.xlsx"
    assert read_data_row_indices(read_cells(path_second)) == [0, 1]
    assert _list_part_files(tmp_path) == []


def test_file_name_defaults_and_extension(tmp_path: Path) -> None:
    writer = XlsxRecordWriter(tmp_path)

    path_default = writer.write(_make_a(1))
    assert path_default is not None
    assert path_default.suffix == ".xlsx"
    assert path_default.stem.isdigit()

    path_upper = writer.write(_make_a(1), file_name="Upper.XLSX")
    assert path_upper == tmp_path / "Upper.XLSX"


def test_persistence_failure_returns_none_and_still_sweeps(storage: Path) -> None:
    path_old = storage / "expired.xlsx"
    path_old.write_bytes(b"x")
    n_mtime = time.time() - 90 * 86_400
    os.utime(path_old, (n_mtime, n_mtime))

    path_blocker = storage / "blocker"
    path_blocker.write_text("not a directory")

    assert write_records(_make_a(1), file_name="x", dir_out=path_blocker) is None
    assert not path_old.exists()


def test_retention_sweep_spares_recent_and_foreign_files(storage: Path) -> None:
    path_recent = storage / "recent.xlsx"
    path_recent.write_bytes(b"x")
    path_foreign = storage / "old.txt"
    path_foreign.write_bytes(b"x")
    os.utime(path_foreign, (0, 0))

    path_out = write_records(_make_a(1), file_name="fresh")

    assert path_out == storage / "fresh.xlsx"
    assert path_recent.exists()
    assert path_foreign.exists()


def test_storage_can_be_set_and_reset(tmp_path: Path) -> None:
    set_storage(tmp_path)
    try:
        assert get_storage() == tmp_path
        assert XlsxRecordWriter().dir_storage == tmp_path
        assert XlsxRecordWriter(tmp_path / "own").dir_storage == tmp_path / "own"
    finally:
        set_storage("")
    assert get_storage() == Path(tempfile.gettempdir())


def test_sheet_titles_fall_back_and_are_made_valid(tmp_path: Path) -> None:
    l_rows = [{"orderId": 1, "total": 2.5}]
    path_out = XlsxRecordWriter(tmp_path).write(
        l_rows,
        l_rows,
        [Draft("t")],
        _make_a(1),
        _make_a(1),
        file_name="names",
    )
    assert path_out is not None

    assert read_sheet_names(path_out) == [
        "Sheet - 0",
        "Sheet - 1",
        "Q1_Q2_ _draft_",
        "Shape A",
        "Shape A__2",
    ]
    assert read_row_values(read_cells(path_out, 1), 0) == ["Order Id", "Total"]


def test_polars_frame_is_exported(tmp_path: Path) -> None:
    df = pl.DataFrame(
        {"orderId": [1, 2], "unitPrice": [1.5, 2.25], "shipped": [True, None]}
    )
    path_out = XlsxRecordWriter(tmp_path).write(df, file_name="frame")
    assert path_out is not None

    cells = read_cells(path_out)
    assert read_row_values(cells, 0) == ["Order Id", "Unit Price", "Shipped"]
    assert read_row_values(cells, 1) == ["1", "1.5", "1"]
    assert cells[(1, 2)].cell_type == "b"
    assert (2, 2) not in cells
    # the last row ends at column B, so does the filter
    assert read_autofilter(path_out) == "A1:B1"


def test_constant_memory_skips_auto_sizing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    l_calls: list[str] = []
    monkeypatch.setattr(
        xlsxwriter.worksheet.Worksheet,
        "autofit",
        lambda self, *args, **kwargs: l_calls.append(self.get_name()),
    )

    path_streaming = tmp_path / "streaming.xlsx"
    session = XlsxDocumentSession(
        path_streaming, options=SpecXlsxWriteOptions(if_constant_memory=True)
    )
    ctx = session.add_collection(_make_a(2))
    session.close()

    assert l_calls == []
    assert ctx.stages_done[-1] is EnumSheetStage.DONE
    assert EnumSheetStage.AUTO_SIZED in ctx.stages_done
    assert ctx.report.stages_failed == []

    cells = read_cells(path_streaming)
    assert cells[(0, 0)].cell_type == "inlineStr"
    assert read_row_values(cells, 1) == ["a1", "1", "1.5"]

    with XlsxDocumentSession(tmp_path / "random.xlsx") as session_random:
        ctx_random = session_random.add_collection(_make_a(2))
    assert l_calls == ["Shape A"]
    assert ctx_random.stages_done == [
        EnumSheetStage.CREATED,
        EnumSheetStage.NAMED,
        EnumSheetStage.UNHEADED,
        EnumSheetStage.COLUMNS_ADDED,
        EnumSheetStage.DATA_WRITTEN,
        EnumSheetStage.AUTO_SIZED,
        EnumSheetStage.PANES_FROZEN,
        EnumSheetStage.FILTERS_ATTACHED,
        EnumSheetStage.DONE,
    ]


def test_header_width_grows_with_header_length(tmp_path: Path) -> None:
    @dataclass
    class Wide:
        a: int
        aVeryLongFieldNameIndeed: int

    path_out = XlsxRecordWriter(
        tmp_path, options=SpecXlsxWriteOptions(if_constant_memory=True)
    ).write([Wide(1, 2)], file_name="wide")
    assert path_out is not None

    dict_widths = read_col_widths(path_out)
    assert dict_widths[1] > dict_widths[0]


def test_each_export_uses_a_fresh_document(tmp_path: Path) -> None:
    writer = XlsxRecordWriter(tmp_path)
    path_first = writer.write([Draft("t")], file_name="one")
    path_second = writer.write([Draft("t")], file_name="two")
    assert path_first is not None and path_second is not None

    assert read_sheet_names(path_first) == read_sheet_names(path_second)
    assert len(writer.report()) == 2


def test_concurrent_exports_do_not_interleave(tmp_path: Path) -> None:
    writer = XlsxRecordWriter(tmp_path)
    dict_results: dict[int, Path | None] = {}

    def _run(n: int) -> None:
        dict_results[n] = writer.write(_make_a(n), file_name=f"t{n}")

    l_threads = [threading.Thread(target=_run, args=(_n,)) for _n in range(1, 5)]
    for _t in l_threads:
        _t.start()
    for _t in l_threads:
        _t.join()

    for _n, _path in dict_results.items():
        assert _path == tmp_path / f"t{_n}.xlsx"
        assert read_data_row_indices(read_cells(_path)) == list(range(_n + 1))


def test_invalid_arguments_fail_eagerly(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="retention_days"):
        XlsxRecordWriter(tmp_path, options=SpecXlsxWriteOptions(retention_days=-1))
    with pytest.raises(ValueError, match="Unknown time zone"):
        XlsxRecordWriter(tmp_path, options=SpecXlsxWriteOptions(tz_reference="Mars/Base"))
    with pytest.raises(TypeError):
        XlsxRecordWriter(tmp_path).write({"not": "a collection"})
    assert list(tmp_path.iterdir()) == []
