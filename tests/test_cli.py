from __future__ import annotations

import json

from click.testing import CliRunner

from landedcost.cli.main import cli
from landedcost.db.models import DutyRate, ImportRun, VatRule

VAT_ROWS = [
    {"dest": "DE", "rate_pct": "19", "base": "CIF_PLUS_DUTY", "effective_from": "2024-01-01"},
    {"dest": "FR", "rate_pct": "20", "base": "CIF_PLUS_DUTY", "effective_from": "2024-01-01"},
]


def _write(tmp_path, name: str, payload) -> str:
    path = tmp_path / name
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")
    return str(path)


def test_cli_help() -> None:
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "import" in result.stdout
    assert "quote" in result.stdout


def test_import_json_file(tmp_path, session_factory) -> None:
    location = _write(tmp_path, "vat.json", {"rows": VAT_ROWS})

    result = CliRunner().invoke(
        cli,
        ["import", location, "--source", "csv", "--job", "vat:eu", "--import-id", "vat-cli"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["inserted"] == 2
    assert payload["import_run_id"] == "vat-cli"
    session = session_factory()
    try:
        assert session.get(ImportRun, "vat-cli").source == "CSV"
        assert session.query(VatRule).count() == 2
    finally:
        session.close()


def test_import_csv_dry_run(tmp_path, session_factory) -> None:
    csv_text = "dest,rate_pct,base,effective_from\nDE,19,CIF_PLUS_DUTY,2024-01-01\n"
    location = _write(tmp_path, "vat.csv", csv_text)

    result = CliRunner().invoke(
        cli,
        ["import", location, "--source", "CSV", "--job", "vat:eu", "--dry-run"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["dry_run"] is True
    assert payload["inserted"] == 1
    session = session_factory()
    try:
        assert session.query(VatRule).count() == 0
    finally:
        session.close()


def test_import_csv_with_blank_optional_cells(tmp_path, session_factory) -> None:
    csv_text = (
        "dest,partner,hs6,rule,rate_pct,specific_amount,specific_unit,specific_currency,effective_from,effective_to\n"
        "DE,,847130,MFN,5,,,,2024-01-01,\n"
        "DE,KR,847130,FTA,0,,,,2024-01-01,2030-01-01\n"
    )
    location = _write(tmp_path, "duties.csv", csv_text)

    result = CliRunner().invoke(
        cli, ["import", location, "--source", "CSV", "--job", "duties:eu"], catch_exceptions=False
    )

    assert result.exit_code == 0
    assert json.loads(result.stdout)["inserted"] == 2
    session = session_factory()
    try:
        mfn = session.query(DutyRate).filter_by(rule="MFN").one()
        assert mfn.effective_to is None
    finally:
        session.close()


def test_import_missing_file_fails(tmp_path) -> None:
    result = CliRunner().invoke(
        cli, ["import", str(tmp_path / "absent.json"), "--source", "CSV", "--job", "vat:eu"]
    )
    assert result.exit_code == 1
    assert "no such file" in result.output


def test_import_with_no_valid_rows_fails(tmp_path) -> None:
    location = _write(tmp_path, "bad.json", [{"dest": "Germany", "rate_pct": "19", "effective_from": "2024-01-01"}])

    result = CliRunner().invoke(cli, ["import", location, "--source", "CSV", "--job", "vat:eu"])

    assert result.exit_code == 1


def test_quote_command(tmp_path, seed) -> None:
    seed.category("laptops", "847130")
    seed.duty("DE", "847130", 5)
    seed.vat("DE", 10, base="CIF_PLUS_DUTY")
    request = {
        "origin": "CN",
        "dest": "DE",
        "item_value": {"amount": "100", "currency": "EUR"},
        "dims_cm": {"l": 10, "w": 10, "h": 10},
        "weight_kg": "1",
        "category_key": "laptops",
    }
    location = _write(tmp_path, "quote.json", request)

    result = CliRunner().invoke(cli, ["quote", "--input", location, "--as-of", "2025-06-01"], catch_exceptions=False)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["total"] == "115.50"
    assert payload["components"]["vat"] == "10.50"


def test_quote_unknown_category_fails(tmp_path) -> None:
    request = {
        "origin": "CN",
        "dest": "DE",
        "item_value": {"amount": "100", "currency": "EUR"},
        "dims_cm": {"l": 10, "w": 10, "h": 10},
        "weight_kg": "1",
        "category_key": "spaceships",
    }
    location = _write(tmp_path, "quote.json", request)

    result = CliRunner().invoke(cli, ["quote", "--input", location])

    assert result.exit_code == 1
    assert "spaceships" in result.output


def test_maintenance_commands() -> None:
    runner = CliRunner()

    swept = runner.invoke(cli, ["sweep-stale", "--threshold-minutes", "30"], catch_exceptions=False)
    pruned = runner.invoke(cli, ["prune", "--days", "90"], catch_exceptions=False)
    counters = runner.invoke(cli, ["counters"], catch_exceptions=False)

    assert json.loads(swept.stdout)["swept"] == 0
    assert json.loads(pruned.stdout)["imports_deleted"] == 0
    assert json.loads(counters.stdout) == {}
