"""
Orchestration Tests
===================
Filtering, recompute-on-change session, chart rendering, export and
the config-driven batch run.

Run with: python -m pytest tests/test_charts.py -v
"""

import os
import pandas as pd
import pytest
import yaml
import matplotlib.pyplot as plt

from spc_explorer.charts import (
    SpcSession,
    Snapshot,
    apply_filters,
    extract_values,
    spec_from_column,
    parse_specs,
    build_snapshot,
    render_trend_chart,
    render_distribution_chart,
    export_chart,
    export_filtered,
    run_from_config,
    safe_tag,
)
from spc_explorer.memory import SelectionStore
from spc_explorer.metrics import SpecLimits, compute_statistics
from spc_explorer.run_report import run_report, main
from spc_explorer.workbook import Workbook, WorkbookError


ROWS = [
    {"Date": "d1", "Machine": "A", "Value": 10, "USL": 20},
    {"Date": "d2", "Machine": "B", "Value": "12", "USL": 25},
    {"Date": "d3", "Machine": "A", "Value": 11},
    {"Date": "d4", "Machine": "B", "Value": "n/a"},
    {"Date": "d5", "Machine": "A", "Value": 13, "Other": "$5"},
]


class TestRowHelpers:

    def test_apply_filters_keeps_order(self):
        out = apply_filters(ROWS, {"Machine": "A"})
        assert [r["Date"] for r in out] == ["d1", "d3", "d5"]

    def test_apply_filters_compares_text(self):
        rows = [{"Lot": 1}, {"Lot": "1"}, {"Lot": 2.0}]
        assert len(apply_filters(rows, {"Lot": "1"})) == 2
        assert len(apply_filters(rows, {"Lot": 2})) == 1

    def test_missing_cell_never_matches(self):
        """A row without the filtered column is excluded, even for the text 'None'."""
        rows = [{"M": "None"}, {}, {"M": None}]
        assert apply_filters(rows, {"M": "None"}) == [{"M": "None"}]

    def test_no_filters(self):
        assert apply_filters(ROWS, {}) == ROWS

    def test_extract_values_drops_non_numbers(self):
        assert extract_values(ROWS, "Value") == [10, 12.0, 11, 13]
        assert extract_values(ROWS, "Other") == [5.0]
        assert extract_values(ROWS, "Missing") == []

    def test_spec_from_column(self):
        assert spec_from_column(ROWS, "USL") == 20
        assert spec_from_column(ROWS, "Machine") is None
        assert spec_from_column([], "USL") is None

    def test_parse_specs(self):
        specs = parse_specs("100", "$110", "")
        assert specs == SpecLimits(target=100.0, usl=110.0, lsl=None)
        assert parse_specs("1.", "abc", None).usl is None

    def test_build_snapshot(self):
        snap = build_snapshot(ROWS, "Date", ["Value"], SpecLimits(usl=20), {"Machine": "A"})

        assert snap.total_rows == 5
        assert snap.filtered_rows == 3
        assert snap.values == (10, 11, 13)
        assert snap.stats == compute_statistics([10, 11, 13], SpecLimits(usl=20))

    def test_build_snapshot_without_y(self):
        snap = build_snapshot(ROWS, "Date", [])
        assert snap.stats.n == 0
        assert snap.values == ()


class TestSession:
    """Every state change produces a fresh snapshot for all subscribers."""

    def _session(self):
        session = SpcSession()
        session.load_rows(ROWS, ["Sheet1"])
        return session

    def test_defaults_after_load(self):
        session = self._session()

        assert session.columns == ["Date", "Machine", "Value", "USL", "Other"]
        assert session.x_column == "Date"
        assert session.y_columns == ["Value"]
        assert session.snapshot.values == (10, 12.0, 11, 13)

    def test_listeners_get_new_snapshots(self):
        session = self._session()
        seen = []
        unsubscribe = session.subscribe(seen.append)

        first = session.snapshot
        session.set_filter("Machine", "A")
        session.set_specs(usl="20", lsl="0")

        assert len(seen) == 2
        assert seen[0] is not seen[1]
        assert seen[-1] is session.snapshot
        assert first.filtered_rows == 5
        assert seen[0].filtered_rows == 3
        assert seen[1].stats.cpk is not None

        unsubscribe()
        session.reset_filters()
        assert len(seen) == 2

    def test_blank_filter_removes_it(self):
        session = self._session()
        session.set_filter("Machine", "B")
        assert session.snapshot.filtered_rows == 2
        session.set_filter("Machine", "")
        assert session.filters == {}
        assert session.snapshot.filtered_rows == 5

    def test_empty_filter_result_is_not_an_error(self):
        session = self._session()
        session.set_filter("Machine", "A")
        session.set_filter("Date", "d2")

        assert session.snapshot.filtered_rows == 0
        assert session.snapshot.stats.n == 0

    def test_stale_filters_dropped_on_reload(self):
        session = self._session()
        session.set_filter("Machine", "A")
        session.load_rows([{"Machine": "C", "Value": 1}, {"Machine": "D", "Value": 2}])
        assert session.filters == {}

    def test_axes_kept_when_still_present(self):
        session = self._session()
        session.set_axes("Machine", ["Other"])
        session.load_rows(ROWS)
        assert session.x_column == "Machine"
        assert session.y_columns == ["Other"]

    def test_spec_from_column_uses_filtered_rows(self):
        session = self._session()
        session.set_filter("Machine", "B")
        session.set_spec_from_column("usl", "USL")
        assert session.specs.usl == 25.0

    def test_spec_from_non_numeric_column_ignored(self):
        session = self._session()
        session.set_specs(lsl=1)
        session.set_spec_from_column("lsl", "Machine")
        assert session.specs.lsl == 1.0

    def test_unknown_spec_field(self):
        with pytest.raises(ValueError):
            self._session().set_spec_from_column("mean", "USL")

    def test_filter_options(self):
        options = self._session().filter_options()
        assert options["Machine"] == ["A", "B"]
        assert "Other" not in options

    def test_load_sheets_requires_workbook(self):
        with pytest.raises(WorkbookError):
            SpcSession().load_sheets(["Sheet1"])


@pytest.fixture
def workbook_path(tmp_path):
    path = tmp_path / "line.xlsx"
    df1 = pd.DataFrame({
        "Date": [f"2024-01-{i:02d}" for i in range(1, 11)],
        "Machine": ["M-01", "M-02"] * 5,
        "Thickness": [100.2, 99.8, 101.0, 100.5, 98.9, 100.1, 99.5, 100.8, 100.0, 99.7],
    })
    df2 = pd.DataFrame({
        "Date": ["2024-02-01", "2024-02-02"],
        "Machine": ["M-01", "M-01"],
        "Thickness": [100.4, 99.9],
    })
    with pd.ExcelWriter(path) as writer:
        df1.to_excel(writer, sheet_name="Line1", index=False)
        df2.to_excel(writer, sheet_name="Line2", index=False)
    return path


class TestSelectionMemory:

    def test_session_restores_previous_selection(self, workbook_path, tmp_path):
        store_path = str(tmp_path / "mem" / "sel.json")
        wb = Workbook.from_path(workbook_path)

        first = SpcSession(wb, SelectionStore(store_path))
        first.load_sheets(["Line2"])
        first.set_axes("Machine", ["Thickness"])
        first.set_filter("Machine", "M-01")

        second = SpcSession(wb, SelectionStore(store_path))
        second.load_sheets()
        assert second.sheets == ["Line2"]
        assert second.x_column == "Machine"
        assert second.filters == {"Machine": "M-01"}

    def test_first_sheet_when_nothing_remembered(self, workbook_path, tmp_path):
        wb = Workbook.from_path(workbook_path)
        session = SpcSession(wb, SelectionStore(str(tmp_path / "sel.json")))
        session.load_sheets()
        assert session.sheets == ["Line1"]
        assert session.x_column == "Date"
        assert session.y_columns == ["Thickness"]


class TestRendering:

    def test_trend_chart(self):
        snap = build_snapshot(ROWS, "Date", ["Value", "Other"], SpecLimits(usl=12, lsl=10.5))
        fig = render_trend_chart(snap, panel=[("line", None), ("Cpk: 1.0", "red")])
        assert fig is not None
        assert len(fig.axes) == 2
        plt.close(fig)

    def test_trend_chart_needs_axes_and_rows(self):
        assert render_trend_chart(build_snapshot(ROWS, None, ["Value"])) is None
        assert render_trend_chart(build_snapshot([], "Date", ["Value"])) is None

    def test_distribution_chart(self):
        snap = build_snapshot(ROWS, "Date", ["Value"], SpecLimits(usl=14, lsl=9))
        fig = render_distribution_chart(snap)
        assert fig is not None
        assert "Cpk:" in fig.axes[0].get_title()
        plt.close(fig)

    def test_distribution_chart_single_point(self):
        snap = build_snapshot([{"v": 1}], None, ["v"], SpecLimits(usl=2, lsl=0))
        fig = render_distribution_chart(snap)
        assert fig is not None
        plt.close(fig)

    def test_distribution_chart_empty(self):
        assert render_distribution_chart(build_snapshot([], None, ["v"])) is None


class TestExport:

    def test_export_chart_png(self, tmp_path):
        fig, ax = plt.subplots()
        ax.plot([1, 2], [3, 4])
        out = export_chart(fig, str(tmp_path / "charts" / "trend.png"))
        plt.close(fig)
        with open(out, "rb") as f:
            assert f.read(8) == b"\x89PNG\r\n\x1a\n"

    def test_export_filtered(self, tmp_path):
        snap = build_snapshot(ROWS, "Date", ["Value"], filters={"Machine": "A"})
        out = export_filtered(snap, str(tmp_path), "Sheet1")

        assert os.path.basename(out) == "filtered_data_Sheet1.xlsx"
        df = pd.read_excel(out, sheet_name="FilteredData")
        assert len(df) == 3
        assert list(df.columns) == ["Date", "Machine", "Value", "USL", "Other"]

    def test_safe_tag(self):
        assert safe_tag("A/B") == "A-B"
        assert safe_tag('x\\y:z*?"<>|') == "x-y-z------"
        assert safe_tag("Line1_Line2") == "Line1_Line2"

    def test_export_filtered_with_separator_in_tag(self, tmp_path):
        snap = build_snapshot(ROWS, "Date", ["Value"])
        out = export_filtered(snap, str(tmp_path), "A/B")

        assert os.path.dirname(out) == str(tmp_path)
        assert os.path.basename(out) == "filtered_data_A-B.xlsx"
        assert os.path.exists(out)

    def test_export_filtered_empty(self, tmp_path):
        snap = build_snapshot(ROWS, "Date", ["Value"], filters={"Machine": "Z"})
        assert export_filtered(snap, str(tmp_path), "x") is None


class TestRunFromConfig:

    def _cfg(self, workbook_path, tmp_path, **extra):
        cfg = {
            "workbook": str(workbook_path),
            "sheets": ["Line1", "Line2"],
            "x_column": "Date",
            "y_columns": ["Thickness"],
            "filters": {"Machine": "M-01"},
            "specs": {"target": 100, "usl": 102, "lsl": 98},
            "results_dir": str(tmp_path / "results"),
        }
        cfg.update(extra)
        return cfg

    def test_full_run(self, workbook_path, tmp_path, capsys):
        cfg = self._cfg(workbook_path, tmp_path)
        snap = run_from_config(cfg)

        assert isinstance(snap, Snapshot)
        assert snap.total_rows == 12
        assert snap.filtered_rows == 7
        assert snap.stats.cpk is not None
        results = tmp_path / "results"
        assert (results / "trend_chart_Line1_Line2.png").exists()
        assert (results / "normal_dist_Line1_Line2.png").exists()
        assert (results / "filtered_data_Line1_Line2.xlsx").exists()
        assert (results / "_memory" / "spc_selections.json").exists()
        out = capsys.readouterr().out
        assert "Cpk" in out
        assert "Filters: Machine=M-01" in out

    def test_second_run_uses_only_its_own_filters(self, workbook_path, tmp_path, capsys):
        """Filters remembered from an earlier run are not carried into a batch run."""
        first = run_from_config(self._cfg(workbook_path, tmp_path))
        assert first.filtered_rows == 7

        cfg = self._cfg(workbook_path, tmp_path)
        del cfg["filters"]
        capsys.readouterr()
        second = run_from_config(cfg)

        assert second.filtered_rows == 12
        assert second.stats.n == 12
        assert "Filters: none" in capsys.readouterr().out

    def test_changed_filter_replaces_previous(self, workbook_path, tmp_path):
        run_from_config(self._cfg(workbook_path, tmp_path))
        snap = run_from_config(self._cfg(workbook_path, tmp_path, filters={"Machine": "M-02"}))
        assert snap.filtered_rows == 5
        assert all(r["Machine"] == "M-02" for r in snap.rows)

    def test_charts_disabled(self, workbook_path, tmp_path):
        cfg = self._cfg(workbook_path, tmp_path, charts={"trend": False, "distribution": False},
                        export_filtered=False)
        run_from_config(cfg)
        assert not list((tmp_path / "results").glob("*.png"))
        assert not list((tmp_path / "results").glob("*.xlsx"))

    def test_spec_columns(self, tmp_path):
        path = tmp_path / "limits.xlsx"
        pd.DataFrame({"Value": [1.0, 2.0, 1.5], "USL": [3.0, 3.0, 3.0]}).to_excel(path, index=False)
        cfg = {"workbook": str(path), "y_columns": ["Value"], "spec_columns": {"usl": "USL"},
               "results_dir": str(tmp_path / "out"), "charts": {"trend": False, "distribution": False}}
        snap = run_from_config(cfg)
        assert snap.specs.usl == 3.0
        assert snap.stats.ca is None
        assert snap.stats.cpk is not None

    def test_missing_workbook(self, tmp_path, capsys):
        assert run_from_config({"workbook": str(tmp_path / "nope.xlsx")}) is None
        assert "not found" in capsys.readouterr().out

    def test_missing_sheet(self, workbook_path, tmp_path, capsys):
        cfg = self._cfg(workbook_path, tmp_path, sheets=["Nope"])
        assert run_from_config(cfg) is None
        assert "Nope" in capsys.readouterr().out

    def test_cli(self, workbook_path, tmp_path):
        cfg_path = tmp_path / "spc_config.yaml"
        cfg = self._cfg(workbook_path, tmp_path)
        del cfg["workbook"]
        cfg_path.write_text(yaml.safe_dump(cfg, allow_unicode=True), encoding="utf-8")

        main(["--cfg", str(cfg_path), "--workbook", str(workbook_path), "--sheet", "Line2"])
        assert (tmp_path / "results" / "trend_chart_Line2.png").exists()

    def test_run_report_without_config(self, workbook_path, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        snap = run_report(str(tmp_path / "absent.yaml"), workbook=str(workbook_path))
        assert snap is not None
        assert snap.y_columns == ("Thickness",)
        assert (tmp_path / "results").exists()
