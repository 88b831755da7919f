import json

import click
import pytest
from click.testing import CliRunner

from plate_billing import main
from plate_billing.main import build_rates_from_options, cli, parse_amount
from plate_billing.data_models import ReturnDayRule, ServiceChargeMode


@pytest.fixture
def transactions_file(tmp_path):
    path = tmp_path / "transactions.json"
    path.write_text(
        json.dumps(
            {
                "client": {"id": "c1", "name": "Ramesh Patel", "site": "Navrangpura"},
                "issues": [
                    {"number": "CH-1", "date": "2024-01-01", "items": [{"plate_size": "2 X 3", "quantity": 100}]}
                ],
                "returns": [
                    {"number": "RT-1", "date": "2024-01-11", "items": [{"plate_size": "2 X 3", "quantity": 40}]}
                ],
            }
        ),
        encoding="utf-8",
    )
    return path


def test_calculate_prints_summary(transactions_file):
    runner = CliRunner()
    result = runner.invoke(
        cli,
        [
            "calculate",
            str(transactions_file),
            "--bill-date",
            "2024-01-20",
            "--return-rule",
            "same_day",
            "--extra",
            "Transport:1:200",
            "--discount",
            "Regular client:1:50",
            "--payment",
            "Cash:300",
            "--advance",
            "500",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Total rent         : 1600.00" in result.output
    assert "Final due          : 950.00" in result.output
    assert "CH-1" in result.output


def test_calculate_exports_json(transactions_file, tmp_path):
    output = tmp_path / "bill.json"
    result = CliRunner().invoke(
        cli,
        ["calculate", str(transactions_file), "-b", "2024-01-20", "--preset", "gujarati", "--output", str(output)],
    )

    assert result.exit_code == 0, result.output
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["total_rent"] == "1540.00"
    assert data["lost_plates_count"] == 60
    assert data["core_total"] == "16640.00"
    assert [e["days"] for e in data["ledger_entries"]] == [10, 9]


def test_calculate_exports_csv(transactions_file, tmp_path):
    output = tmp_path / "ledger.csv"
    result = CliRunner().invoke(cli, ["calculate", str(transactions_file), "-b", "2024-01-20", "--output", str(output)])

    assert result.exit_code == 0, result.output
    lines = output.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("Date,Kind,Document")
    assert len(lines) == 3


def test_ledger_command_audits(transactions_file):
    result = CliRunner().invoke(cli, ["ledger", str(transactions_file), "-b", "2024-01-20"])
    assert result.exit_code == 0, result.output
    assert "Ledger OK" in result.output
    assert "Total rent: 1540.00" in result.output


def test_ledger_command_fails_on_audit_problems(transactions_file, monkeypatch):
    monkeypatch.setattr(main, "audit_ledger", lambda ledger: ["Plate balance went negative"])
    result = CliRunner().invoke(cli, ["ledger", str(transactions_file), "-b", "2024-01-20"])
    assert result.exit_code == 1
    assert "PROBLEM: Plate balance went negative" in result.output
    assert "ledger audit found 1 problem(s)" in result.output
    assert "Ledger OK" not in result.output


def test_compare_rules(transactions_file):
    result = CliRunner().invoke(cli, ["compare-rules", str(transactions_file), "-b", "2024-01-20"])
    assert result.exit_code == 0, result.output
    assert "NextDay" in result.output
    assert "60.00" in result.output


def test_bad_transaction_data_fails(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(
        json.dumps({"client": {"name": "Bad Data"}, "issues": [{"number": "CH-1", "date": "2024-13-01", "items": []}]}),
        encoding="utf-8",
    )
    result = CliRunner().invoke(cli, ["calculate", str(path), "-b", "2024-01-20"])
    assert result.exit_code != 0
    assert "bill calculation failed for client Bad Data" in result.output


def test_bad_extra_format_fails(transactions_file):
    result = CliRunner().invoke(cli, ["calculate", str(transactions_file), "-b", "2024-01-20", "--extra", "oops"])
    assert result.exit_code != 0
    assert "NOTE:QTY:PRICE" in result.output


def test_parse_amount_accepts_shorthand():
    assert str(parse_amount("1,500.50")) == "1500.50"
    assert parse_amount("2k") == 2000


@pytest.mark.parametrize("value", ["nan", "Infinity", "-inf"])
def test_parse_amount_rejects_non_finite(value):
    with pytest.raises(click.BadParameter):
        parse_amount(value)


def test_service_rate_goes_to_mode_field():
    rates = build_rates_from_options(None, "2", "percentage", "12", None, None, "same_day")
    assert rates.service_charge_mode is ServiceChargeMode.PERCENTAGE
    assert rates.service_charge_percent == 12
    assert rates.daily_rate == 2
    assert rates.return_day_rule is ReturnDayRule.SAME_DAY
