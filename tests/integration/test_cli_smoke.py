from pathlib import Path

import pytest

from building_compliance.cli import parse_args, run_command
from building_compliance.common.constants import EXIT_PARTIAL, EXIT_SUCCESS
from building_compliance.common.fs import read_json


@pytest.fixture
def demo_overlay(tmp_path: Path) -> Path:
    overlay = tmp_path / "overlay"
    overlay.mkdir()
    (overlay / "compliance.yml").write_text("demo_mode: true\n", encoding="utf-8")
    return overlay


def cli_args(command, *extra, data_dir: Path, overlay: Path):
    return parse_args(
        [
            command,
            *extra,
            "--config-dir",
            "config",
            "--overlay-config-dir",
            str(overlay),
            "--data-dir",
            str(data_dir),
            "--run-id",
            "run-test",
        ]
    )


@pytest.mark.integration
def test_cli_check_in_demo_mode_writes_snapshot(tmp_path: Path, demo_overlay: Path):
    data_dir = tmp_path / "data"

    exit_code = run_command(cli_args("check", "100 Sample St, Manhattan", data_dir=data_dir, overlay=demo_overlay))

    assert exit_code == EXIT_SUCCESS
    snapshot = read_json(data_dir / "out" / "snapshots" / "bbl-1999010001-bin-1999001.json")
    assert snapshot["score"] == 84
    assert snapshot["grade"] == "B+"
    assert [v["external_id"] for v in snapshot["violations"]] == ["DEMO-H-1", "DEMO-S-1", "DEMO-H-2"]
    assert (data_dir / "state" / "identities.json").exists()
    assert (data_dir / "state" / "snapshots.json").exists()
    assert (data_dir / "run_meta" / "run-test.log.jsonl").exists()


@pytest.mark.integration
def test_cli_portfolio_reports_unresolved_addresses_as_partial(tmp_path: Path, demo_overlay: Path):
    data_dir = tmp_path / "data"
    addresses = tmp_path / "buildings.txt"
    addresses.write_text(
        "# demo portfolio\n100 Sample Street, Manhattan\n200 Example Ave, Brooklyn\n1 Nowhere Lane, Queens\n",
        encoding="utf-8",
    )

    exit_code = run_command(
        cli_args("portfolio", "--addresses-file", str(addresses), data_dir=data_dir, overlay=demo_overlay)
    )

    assert exit_code == EXIT_PARTIAL
    report = read_json(data_dir / "out" / "reports" / "portfolio_summary.json")
    assert report["summary"]["total_buildings"] == 2
    assert report["summary"]["critical_building_ids"] == ["bbl-1999010001-bin-1999001"]
    assert report["unresolved"] == {"1 Nowhere Lane, Queens": "UNRESOLVED_ADDRESS"}


@pytest.mark.integration
def test_cli_invalidate_then_force_refresh(tmp_path: Path, demo_overlay: Path):
    data_dir = tmp_path / "data"
    building_id = "bbl-3999020007-bin-3999002"
    assert run_command(cli_args("check", "200 Example Ave, Brooklyn", data_dir=data_dir, overlay=demo_overlay)) == 0

    assert run_command(cli_args("invalidate", building_id, data_dir=data_dir, overlay=demo_overlay)) == EXIT_SUCCESS
    assert read_json(data_dir / "state" / "snapshots.json")["entries"] == {}

    exit_code = run_command(cli_args("force-refresh", building_id, "--reverify", data_dir=data_dir, overlay=demo_overlay))
    assert exit_code == EXIT_SUCCESS
    assert building_id in read_json(data_dir / "state" / "snapshots.json")["entries"]
