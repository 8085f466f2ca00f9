from __future__ import annotations

import argparse
import json
import platform
import re
import statistics
import sys
import tempfile
import zipfile
from dataclasses import asdict, dataclass, make_dataclass
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from time import perf_counter
from typing import Any

import polars as pl

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from recordkit.io.xlsx import SpecXlsxWriteOptions, XlsxRecordWriter  # noqa: E402


@dataclass(frozen=True)
class RecordBenchmarkScenario:
    name: str
    n_rows: int
    n_numeric_fields: int
    n_text_fields: int
    source: str = "dataclass"  # dataclass | mapping | frame
    if_constant_memory: bool = False


@dataclass(frozen=True)
class RecordBenchmarkStats:
    scenario: RecordBenchmarkScenario
    n_cols: int
    repeats: int
    warmup_runs: int
    times_seconds: list[float]
    mean_seconds: float
    median_seconds: float
    min_seconds: float
    max_seconds: float
    stdev_seconds: float
    rows_per_second_median: float
    output_size_bytes_mean: int


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run record -> XLSX export benchmarks for recordkit.io.xlsx.",
    )
    parser.add_argument(
        "--repeat",
        type=int,
        default=5,
        help="Number of measured runs for each scenario.",
    )
    parser.add_argument(
        "--warmup",
        type=int,
        default=1,
        help="Number of warmup runs for each scenario.",
    )
    parser.add_argument(
        "--out-dir",
        type=Path,
        default=PROJECT_ROOT / "benchmarks" / "record_writer" / "results",
        help="Directory where benchmark result files are written.",
    )
    parser.add_argument(
        "--profile",
        choices=("default", "huge"),
        default="default",
        help="Scenario profile to run.",
    )
    return parser.parse_args()


def build_scenarios(profile: str) -> list[RecordBenchmarkScenario]:
    n_scale = 1 if profile == "default" else 5
    l_scenarios: list[RecordBenchmarkScenario] = []
    for _source in ("dataclass", "mapping", "frame"):
        for _if_constant_memory in (False, True):
            c_mode_ = "streaming" if _if_constant_memory else "random"
            l_scenarios.append(
                RecordBenchmarkScenario(
                    name=f"{_source}_narrow_tall_{c_mode_}",
                    n_rows=40_000 * n_scale,
                    n_numeric_fields=8,
                    n_text_fields=3,
                    source=_source,
                    if_constant_memory=_if_constant_memory,
                )
            )
    l_scenarios.append(
        RecordBenchmarkScenario(
            name="dataclass_wide_medium_streaming",
            n_rows=10_000 * n_scale,
            n_numeric_fields=24,
            n_text_fields=12,
            if_constant_memory=True,
        )
    )
    return l_scenarios


def detect_package_version(name: str) -> str:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return "local-src"


def build_frame(*, n_rows: int, n_numeric_fields: int, n_text_fields: int) -> pl.DataFrame:
    df = pl.DataFrame({"row_id": pl.Series("row_id", range(n_rows), dtype=pl.Int64)})

    l_expr: list[pl.Expr] = []
    for n_idx in range(n_numeric_fields):
        l_expr.append(
            ((pl.col("row_id") * (n_idx + 1)).cast(pl.Float64) / 7.0).alias(
                f"value_{n_idx:02d}"
            )
        )
    for n_idx in range(n_text_fields):
        l_expr.append(
            (
                pl.lit(f"group_{n_idx:02d}_")
                + (pl.col("row_id") % 10_000).cast(pl.String)
            ).alias(f"text_{n_idx:02d}")
        )
    l_expr.append(
        (
            pl.lit(datetime(2024, 1, 1))
            + pl.duration(minutes=pl.col("row_id") % 100_000)
        ).alias("created_at")
    )
    df = df.with_columns(l_expr)

    if n_numeric_fields > 0:
        df = df.with_columns(
            pl.when((pl.col("row_id") % 113) == 0)
            .then(None)
            .otherwise(pl.col("value_00"))
            .alias("value_00")
        )
    return df


def build_collection(scenario: RecordBenchmarkScenario) -> Any:
    df = build_frame(
        n_rows=scenario.n_rows,
        n_numeric_fields=scenario.n_numeric_fields,
        n_text_fields=scenario.n_text_fields,
    )
    if scenario.source == "frame":
        return df

    l_rows = df.to_dicts()
    if scenario.source == "mapping":
        return l_rows

    cls_record = make_dataclass(
        "BenchmarkRecord",
        [
            (
                _name,
                int
                if _name == "row_id"
                else datetime
                if _name == "created_at"
                else float | None
                if _name.startswith("value_")
                else str,
            )
            for _name in df.columns
        ],
    )
    return [cls_record(**_row) for _row in l_rows]


def parse_dimension_ref(c_dimension_ref: str) -> tuple[int, int]:
    c_ref_end = c_dimension_ref.split(":")[-1]
    m_ref = re.fullmatch(r"([A-Z]+)([0-9]+)", c_ref_end)
    if not m_ref:
        raise ValueError(f"Invalid worksheet dimension ref: {c_dimension_ref!r}")

    c_col_name, c_row_idx = m_ref.groups()
    n_cols = 0
    for ch in c_col_name:
        n_cols = n_cols * 26 + (ord(ch) - ord("A") + 1)
    return int(c_row_idx), n_cols


def validate_xlsx_output(
    *, path_xlsx_out: Path, expected_rows_total: int, expected_cols_total: int
) -> None:
    with zipfile.ZipFile(path_xlsx_out) as zf:
        v_xml_sheet = zf.read("xl/worksheets/sheet1.xml")

    m_dimension = re.search(rb'<dimension[^>]*\sref="([^"]+)"', v_xml_sheet)
    if not m_dimension:
        raise ValueError("Missing worksheet dimension in `sheet1.xml`.")

    n_rows, n_cols = parse_dimension_ref(m_dimension.group(1).decode("ascii"))
    if (n_rows, n_cols) != (expected_rows_total, expected_cols_total):
        raise ValueError(
            "Dimension mismatch: "
            f"expected={(expected_rows_total, expected_cols_total)}, "
            f"got={(n_rows, n_cols)}."
        )


def run_one_write(
    *, collection: Any, path_dir_out: Path, file_name: str, if_constant_memory: bool
) -> tuple[float, Path]:
    writer = XlsxRecordWriter(
        path_dir_out,
        options=SpecXlsxWriteOptions(if_constant_memory=if_constant_memory),
    )
    n_t_start = perf_counter()
    path_out = writer.write(collection, file_name=file_name)
    n_elapsed = perf_counter() - n_t_start
    if path_out is None:
        raise RuntimeError(f"Export `{file_name}` produced no file.")
    return n_elapsed, path_out


def benchmark_scenario(
    *,
    scenario: RecordBenchmarkScenario,
    repeat: int,
    warmup: int,
    path_dir_tmp: Path,
) -> RecordBenchmarkStats:
    collection = build_collection(scenario)
    n_cols = scenario.n_numeric_fields + scenario.n_text_fields + 2

    l_times_seconds: list[float] = []
    l_output_size_bytes: list[int] = []
    for n_idx in range(warmup + repeat):
        n_elapsed, path_file_out = run_one_write(
            collection=collection,
            path_dir_out=path_dir_tmp,
            file_name=f"{scenario.name}_{n_idx}",
            if_constant_memory=scenario.if_constant_memory,
        )
        validate_xlsx_output(
            path_xlsx_out=path_file_out,
            expected_rows_total=scenario.n_rows + 1,
            expected_cols_total=n_cols,
        )
        if n_idx >= warmup:
            l_times_seconds.append(n_elapsed)
            l_output_size_bytes.append(path_file_out.stat().st_size)
        path_file_out.unlink(missing_ok=True)

    n_median_seconds = statistics.median(l_times_seconds)
    return RecordBenchmarkStats(
        scenario=scenario,
        n_cols=n_cols,
        repeats=repeat,
        warmup_runs=warmup,
        times_seconds=l_times_seconds,
        mean_seconds=statistics.mean(l_times_seconds),
        median_seconds=n_median_seconds,
        min_seconds=min(l_times_seconds),
        max_seconds=max(l_times_seconds),
        stdev_seconds=(
            statistics.stdev(l_times_seconds) if len(l_times_seconds) > 1 else 0.0
        ),
        rows_per_second_median=scenario.n_rows / n_median_seconds,
        output_size_bytes_mean=round(statistics.mean(l_output_size_bytes)),
    )


def render_markdown_summary(payload: dict[str, Any]) -> str:
    l_lines = [
        "# Record Writer Benchmark Record",
        "",
        f"- Timestamp (UTC): `{payload['timestamp_utc']}`",
        f"- Command: `{payload['command']}`",
        f"- Platform: `{payload['platform']}`",
        f"- Python: `{payload['python_version']}`",
        "- Package versions:",
        *(f"  - `{_k}`: `{_v}`" for _k, _v in payload["packages"].items()),
        "",
        "| scenario | source | rows | cols | streaming | repeat | median_s | mean_s | min_s | max_s | rows/s | mean_size_mb |",
        "| --- | --- | ---: | ---: | --- | ---: | ---: | ---: | ---: | ---: | ---: | ---: |",
    ]
    for item in payload["scenarios"]:
        cfg = item["scenario"]
        n_size_mb = float(item["output_size_bytes_mean"]) / (1024 * 1024)
        l_lines.append(
            "| "
            f"{cfg['name']} | {cfg['source']} | {cfg['n_rows']} | {item['n_cols']} | "
            f"{cfg['if_constant_memory']} | {item['repeats']} | "
            f"{item['median_seconds']:.3f} | {item['mean_seconds']:.3f} | "
            f"{item['min_seconds']:.3f} | {item['max_seconds']:.3f} | "
            f"{item['rows_per_second_median']:.0f} | {n_size_mb:.2f} |"
        )

    l_lines.extend(["", "## Raw Timings (seconds)", ""])
    for item in payload["scenarios"]:
        l_lines.append(f"- `{item['scenario']['name']}`: `{item['times_seconds']}`")
    return "\n".join(l_lines) + "\n"


def main() -> int:
    args = parse_args()
    if args.repeat < 1:
        raise ValueError("--repeat must be >= 1")
    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")

    args.out_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc)
    c_timestamp_compact = ts.strftime("%Y%m%dT%H%M%SZ")

    with tempfile.TemporaryDirectory(prefix="recordkit_xlsx_bench_") as c_dir_tmp:
        l_stats = [
            benchmark_scenario(
                scenario=_scenario,
                repeat=args.repeat,
                warmup=args.warmup,
                path_dir_tmp=Path(c_dir_tmp),
            )
            for _scenario in build_scenarios(args.profile)
        ]

    payload: dict[str, Any] = {
        "timestamp_utc": ts.isoformat(),
        "command": " ".join(sys.argv),
        "platform": platform.platform(),
        "python_version": sys.version.split()[0],
        "packages": {
            _name: detect_package_version(_name)
            for _name in ("recordkit", "xlsxwriter", "polars")
        },
        "validation_policy": "validate sheet1 dimension rows/cols",
        "repeat": args.repeat,
        "warmup": args.warmup,
        "profile": args.profile,
        "scenarios": [asdict(item) for item in l_stats],
    }

    path_file_json = args.out_dir / f"record_writer_{c_timestamp_compact}.json"
    path_file_md = args.out_dir / f"record_writer_{c_timestamp_compact}.md"
    path_file_json.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, default=str) + "\n",
        encoding="utf-8",
    )
    path_file_md.write_text(render_markdown_summary(payload), encoding="utf-8")

    print(path_file_json)
    print(path_file_md)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
