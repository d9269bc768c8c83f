"""
Tests for metric_node.ui module.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from rich.console import Console

from metric_node.ui import _fmt_seconds, make_sources_table, print_status


class TestFormatting:
    def test_fmt_seconds(self):
        assert _fmt_seconds(None) == "-"
        assert _fmt_seconds(0) == "-"
        assert _fmt_seconds(86400) == "1d"
        assert _fmt_seconds(7200) == "2h"
        assert _fmt_seconds(300) == "5m"
        assert _fmt_seconds(45) == "45s"


class TestSourcesTable:
    def test_basic_columns(self, make_registry):
        registry = make_registry(
            {"name": "cpu", "interval": 5},
            {"name": "disk", "active": False, "interval": 5},
        )

        table = make_sources_table(registry)

        assert table.row_count == 2
        assert [c.header for c in table.columns] == ["Source", "Status", "Interval", "Retention"]

    def test_store_and_schedule_columns(self, make_registry, store):
        registry = make_registry({"name": "cpu", "interval": 5})
        schedule = {
            "cpu": {"last_fetch_at": None, "fetches": 3, "failures": 1, "last_error": "timeout"},
        }

        table = make_sources_table(registry, store=store, schedule=schedule)

        assert len(table.columns) == 8
        assert table.row_count == 1

    def test_print_status(self, make_registry, store):
        registry = make_registry(
            {"name": "cpu", "interval": 5, "retention": {"active": True, "age_seconds": 3600}},
            {"name": "disk", "active": False, "interval": 5},
        )
        console = Console(record=True, width=120)

        print_status(registry, store=store, console=console)

        output = console.export_text()
        assert "cpu" in output
        assert "1h" in output
        assert "1 active, 1 polling, 1 with retention" in output
