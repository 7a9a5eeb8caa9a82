"""Tests for the renewals CLI."""

from datetime import date

from click.testing import CliRunner
from sqlalchemy import select

from renewals import cli as renewals_cli
from renewals.db.models import RenewalRecord, RenewalUpload

HEADER = "policy_number,renewal_effective_date,first_name,premium_old,premium_new\n"


def _write_csv(tmp_path, name, lines):
    path = tmp_path / name
    path.write_text(HEADER + "".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


def test_read_renewal_csv_matches_headers_and_skips_blank_rows():
    content = "\ufeffPolicy Number,Renewal-Effective-Date,Carrier Junk\nP1,2024-03-05,x\n,,\n"

    rows = renewals_cli.read_renewal_csv(content.encode("utf-8"))

    assert rows == [{"policy_number": "P1", "renewal_effective_date": "2024-03-05"}]


def test_import_renewals_with_declared_range(db, agency_id, tmp_path, monkeypatch):
    monkeypatch.setattr(renewals_cli, "SessionLocal", lambda: db)
    runner = CliRunner()
    first = _write_csv(
        tmp_path,
        "march.csv",
        ["P1,2024-03-01,Pat,100,110", "P2,2024-03-05,Sam,100,90", "P3,2024-03-10,Lee,100,100"],
    )
    second = _write_csv(
        tmp_path, "march-2.csv", ["P2,2024-03-05,Sam,100,90", "P3,2024-03-10,Lee,100,100"]
    )

    runner.invoke(
        renewals_cli.cli,
        ["import-renewals", "--agency-id", str(agency_id), "--file", str(first)],
        catch_exceptions=False,
    )
    result = runner.invoke(
        renewals_cli.cli,
        [
            "import-renewals",
            "--agency-id", str(agency_id),
            "--file", str(second),
            "--start", "2024-03-01",
            "--end", "2024-03-10",
        ],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    assert "0 new, 2 updated, 1 dropped" in result.output
    p1 = db.execute(
        select(RenewalRecord).where(
            RenewalRecord.agency_id == agency_id, RenewalRecord.policy_number == "P1"
        )
    ).scalar_one()
    assert p1.dropped_from_report_at is not None
    upload = db.execute(
        select(RenewalUpload).where(RenewalUpload.filename == "march-2.csv")
    ).scalar_one()
    assert (upload.date_range_start, upload.date_range_end) == (date(2024, 3, 1), date(2024, 3, 10))


def test_import_renewals_rejects_inverted_range(db, agency_id, tmp_path, monkeypatch):
    monkeypatch.setattr(renewals_cli, "SessionLocal", lambda: db)
    path = _write_csv(tmp_path, "march.csv", ["P1,2024-03-05,Pat,100,110"])

    result = CliRunner().invoke(
        renewals_cli.cli,
        [
            "import-renewals",
            "--agency-id", str(agency_id),
            "--file", str(path),
            "--start", "2024-03-31",
            "--end", "2024-03-01",
        ],
    )

    assert result.exit_code != 0
    assert "date_range_start must not be after date_range_end" in result.output
