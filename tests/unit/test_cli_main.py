from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import make_csv, row

from ratecard_recon.cli.__main__ import main as cli_main
from ratecard_recon.ingest.headers import TEMPLATE_COLUMNS


@pytest.fixture()
def cli_env(write_config, clean_logging, monkeypatch) -> Path:
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    return write_config.parent.parent


def _write(workdir: Path, name: str, data: bytes) -> str:
    path = workdir / "data" / name
    path.write_bytes(data)
    return str(path)


def test_template_to_stdout(clean_logging, temp_workdir, capsys):
    code = cli_main(["template"])
    out = capsys.readouterr().out
    assert code == 0
    assert out.splitlines()[0] == ",".join(TEMPLATE_COLUMNS)


def test_template_to_file(clean_logging, temp_workdir, capsys):
    code = cli_main(["template", "-o", "out.csv"])
    assert code == 0
    assert (temp_workdir / "out.csv").read_text(encoding="utf-8").startswith("platform_id,")
    assert "INFO template written: out.csv" in capsys.readouterr().out


def test_parse_clean_file_exits_zero(cli_env, capsys):
    path = _write(cli_env, "rates.csv", make_csv([row(), row(category_id="shoes")]))
    code = cli_main(["parse", path])
    out = capsys.readouterr().out
    assert code == 0
    assert "row 2: valid" in out
    assert "row 3: valid" in out
    assert "SUMMARY phase=parse file=rates.csv rows=2 valid=2 similar=0 duplicate=0 error=0" in out
    assert list((cli_env / "logs").glob("errors-*.log")) == []


def test_parse_with_row_errors_exits_two(cli_env, capsys):
    path = _write(cli_env, "rates.csv", make_csv([row(), row(commission_percent="abc")]))
    code = cli_main(["parse", path])
    out = capsys.readouterr().out
    assert code == 2
    assert "row 3: error" in out
    logs = list((cli_env / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    record = json.loads(logs[0].read_text(encoding="utf-8").splitlines()[0])
    assert record["row"] == 3
    assert record["file"] == "rates.csv"


def test_parse_empty_file_is_fatal(cli_env, capsys):
    path = _write(cli_env, "empty.csv", b"")
    code = cli_main(["parse", path])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR parse:" in out
    logs = list((cli_env / "logs").glob("errors-*.log"))
    record = json.loads(logs[0].read_text(encoding="utf-8").splitlines()[0])
    assert record["row"] == -1
    assert record["error_type"] == "ROW_FAILURE"


def test_missing_file_is_fatal(cli_env, capsys):
    code = cli_main(["parse", str(cli_env / "data" / "nope.csv")])
    assert code == 1
    assert "ERROR file:" in capsys.readouterr().out


def test_bad_config_is_fatal(cli_env, capsys):
    (cli_env / "config" / "ratecards.yml").write_text("sessions:\n  ttl_seconds: -5\n", encoding="utf-8")
    path = _write(cli_env, "rates.csv", make_csv([row()]))
    code = cli_main(["parse", path])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_import_commits_valid_rows(cli_env, capsys):
    path = _write(cli_env, "rates.csv", make_csv([row(), row(category_id="shoes")]))
    code = cli_main(["import", path])
    out = capsys.readouterr().out
    assert code == 0
    assert out.count("imported id=") == 2
    assert "SUMMARY phase=import" in out
    assert "selected=2 inserted=2 skipped=0" in out


def test_import_leaves_similar_rows_without_flag(cli_env, capsys):
    overlapping = row(effective_from="2025-09-01", commission_percent="14")
    path = _write(cli_env, "rates.csv", make_csv([row(), overlapping]))
    code = cli_main(["import", path])
    out = capsys.readouterr().out
    assert code == 2
    assert "row 3: similar" in out
    assert out.count("imported id=") == 1


def test_debug_flag_enables_debug_lines(cli_env, capsys):
    path = _write(cli_env, "rates.csv", make_csv([row()]))
    code = cli_main(["--debug", "parse", path])
    assert code == 0
    assert "DEBUG debug mode enabled" in capsys.readouterr().out
