"""CLI tools for renewals administration."""

import csv
import io
from datetime import datetime
from pathlib import Path
from uuid import UUID

import click

from renewals.core.structured_logging import configure_logging
from renewals.db.base import Base
from renewals.db.session import SessionLocal, engine
from renewals.schemas.renewal import RenewalRowIn
from renewals.services import renewal_service


def normalize_column_name(col: str) -> str:
    """Normalize column name for matching."""
    return col.lower().strip().replace(" ", "_").replace("-", "_")


KNOWN_COLUMNS = set(RenewalRowIn.model_fields)


def read_renewal_csv(content: bytes | str) -> list[dict[str, str]]:
    """
    Read a normalized renewal CSV (one column per RenewalRowIn field).

    Header names are matched case-insensitively; unknown columns are ignored.
    Carrier-specific report formats are converted upstream.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")  # Handle BOM
    reader = csv.reader(io.StringIO(content))
    rows = list(reader)
    if not rows:
        return []

    headers = [normalize_column_name(h) for h in rows[0]]
    column_map = {i: name for i, name in enumerate(headers) if name in KNOWN_COLUMNS}
    records = []
    for row in rows[1:]:
        record = {name: row[i] for i, name in column_map.items() if i < len(row)}
        if any(value.strip() for value in record.values()):
            records.append(record)
    return records


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level: str | None):
    """Renewals CLI tools."""
    configure_logging(log_level)


@cli.command()
def init_db():
    """Create tables directly (local development without migrations)."""
    Base.metadata.create_all(engine)
    click.echo("✓ Tables created")


@cli.command()
@click.option("--agency-id", required=True, type=click.UUID, help="Agency UUID")
@click.option("--file", "file_path", required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--uploaded-by", default=None, help="Display name recorded on the upload")
@click.option("--start", "date_range_start", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="First effective date the report covers")
@click.option("--end", "date_range_end", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Last effective date the report covers")
def import_renewals(
    agency_id: UUID,
    file_path: Path,
    uploaded_by: str | None,
    date_range_start: datetime | None,
    date_range_end: datetime | None,
):
    """
    Reconcile a renewal CSV against the agency's tracked records.

    Example:
        python -m renewals.cli import-renewals --agency-id <uuid> --file renewals.csv \\
            --start 2024-03-01 --end 2024-03-31
    """
    rows = read_renewal_csv(file_path.read_bytes())
    db = SessionLocal()
    try:
        result = renewal_service.process_upload(
            db,
            agency_id,
            rows,
            filename=file_path.name,
            uploaded_by_display_name=uploaded_by,
            date_range_start=date_range_start.date() if date_range_start else None,
            date_range_end=date_range_end.date() if date_range_end else None,
        )
    except renewal_service.RenewalServiceError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    click.echo(f"✓ Upload {result.upload.id}")
    click.echo(
        f"  {result.new_count} new, {result.updated_count} updated, "
        f"{result.dropped_count} dropped, {result.restored_count} restored"
    )
    if result.auto_promoted_count:
        click.echo(f"  {result.auto_promoted_count} dropped 'Renewal Taken' records marked successful")
    if result.errors:
        click.echo(f"  {result.error_count} rows rejected")


@cli.command()
@click.option("--agency-id", required=True, type=click.UUID, help="Agency UUID")
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--page-size", default=50, show_default=True, type=int)
def list_dropped(agency_id: UUID, page: int, page_size: int):
    """List unresolved dropped records."""
    db = SessionLocal()
    try:
        records, total = renewal_service.list_dropped(db, agency_id, page=page, page_size=page_size)
        click.echo(f"{total} dropped records")
        for record in records:
            click.echo(
                f"  {record.policy_number}  {record.renewal_effective_date.isoformat()}  "
                f"{record.current_status}  dropped {record.dropped_from_report_at:%Y-%m-%d}"
            )
    finally:
        db.close()


if __name__ == "__main__":
    cli()
