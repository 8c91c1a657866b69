from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
import json
from pathlib import Path
import time

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
import typer

from aafeed.adapters.db.facade import DB
from aafeed.core.config import AAFeedConfig, load_config_from_env
from aafeed.core.domain import ConsentStatus, DateRange
from aafeed.core.errors import AAFeedError
from aafeed.core.logging_setup import configure_logging
from aafeed.infra.clients.factory import build_aggregator_client
from aafeed.infra.clients.synthetic import SyntheticAggregatorClient
from aafeed.infra.clients.timeout import TimeoutAggregatorClient
from aafeed.services.aa.service import AAService
from aafeed.services.webhooks import build_webhook_handler

# Load environment variables from .env
load_dotenv()

app = typer.Typer(
    help="aafeed: consent-gated bank transaction ingestion.",
    no_args_is_help=True,
)
console = Console()


def _load_config(db_url: str | None) -> AAFeedConfig:
    config = load_config_from_env()
    configure_logging(config.log_level)
    if db_url:
        config = replace(config, database_url=db_url)
    return config


def _open_db(config: AAFeedConfig) -> DB:
    db = DB(config.database_url)
    db.create_all()
    return db


def _build_service(
    config: AAFeedConfig, db: DB
) -> tuple[AAService, TimeoutAggregatorClient]:
    client = build_aggregator_client(config)
    service = AAService(
        client,
        db.repositories(),
        consent_validity_days=config.consent_validity_days,
        hash_lookback=config.hash_lookback,
    )
    return service, client


@app.command("init-db")
def init_db(
    db_url: str | None = typer.Option(None, help="Database URL override"),
) -> None:
    """Create the database tables."""
    config = _load_config(db_url)
    _open_db(config)
    typer.echo(f"Initialized database at {config.database_url}")


@app.command("demo")
def demo(
    user_id: str = typer.Option("demo-user", help="User to ingest for"),
    days: int = typer.Option(7, help="Number of days to fetch, ending today"),
    fi_type: str = typer.Option("SAVINGS", help="Financial information type"),
    db_url: str | None = typer.Option(None, help="Database URL override"),
    poll_interval: float = typer.Option(0.5, help="Seconds between session polls"),
    max_polls: int = typer.Option(20, help="Polls before giving up"),
) -> None:
    """Run consent, approval and one fetch against the synthetic provider."""
    config = _load_config(db_url)
    if config.provider != "synthetic":
        raise typer.BadParameter("demo requires AAFEED_PROVIDER=synthetic")

    db = _open_db(config)
    service, client = _build_service(config, db)
    provider = client.inner
    if not isinstance(provider, SyntheticAggregatorClient):
        raise typer.BadParameter("demo requires the synthetic provider")

    to_date = date.today()
    from_date = to_date - timedelta(days=max(days - 1, 0))
    try:
        initiated = service.initiate_consent(
            user_id,
            fi_type,
            "Personal finance tracking",
            DateRange(from_date, to_date),
            "DAILY",
        )
        handle = initiated.consent.consent_handle
        typer.echo(f"Consent {initiated.consent.id} created: {initiated.redirect_url}")

        provider.approve_consent(handle)
        service.handle_consent_callback(handle, ConsentStatus.ACTIVE)

        result = service.fetch_transactions(
            user_id, initiated.consent.id, from_date, to_date
        )
        polls = 0
        while not result.processed and polls < max_polls:
            time.sleep(poll_interval)
            polls += 1
            result = service.poll_session(user_id, result.session_id)

        typer.echo(json.dumps(result.to_summary(), indent=2))
        if not result.processed:
            raise typer.Exit(code=1)
    finally:
        provider.close()
        client.shutdown()


@app.command("webhook")
def webhook(
    kind: str = typer.Argument(..., help="Callback kind: consent or data-ready"),
    body_file: Path = typer.Argument(..., help="File holding the raw request body"),
    signature: str = typer.Option(..., help="Hex HMAC-SHA256 signature header"),
    db_url: str | None = typer.Option(None, help="Database URL override"),
) -> None:
    """Deliver a signed aggregator callback body to the webhook handler."""
    if kind not in ("consent", "data-ready"):
        raise typer.BadParameter("kind must be 'consent' or 'data-ready'")
    config = _load_config(db_url)
    db = _open_db(config)
    service, client = _build_service(config, db)
    try:
        try:
            handler = build_webhook_handler(config, service)
        except ValueError as e:
            raise typer.BadParameter(str(e)) from e

        body = body_file.read_bytes()
        try:
            if kind == "consent":
                summary = handler.handle_consent_callback(body, signature)
            else:
                summary = handler.handle_data_ready(body, signature).to_summary()
        except AAFeedError as e:
            typer.echo(f"Webhook rejected: {e}", err=True)
            raise typer.Exit(code=1) from e
    finally:
        client.shutdown()

    typer.echo(json.dumps(summary, indent=2))


@app.command("consents")
def consents(
    user_id: str = typer.Argument(..., help="User whose consents to list"),
    active_only: bool = typer.Option(False, help="Only ACTIVE, unexpired consents"),
    db_url: str | None = typer.Option(None, help="Database URL override"),
) -> None:
    """List a user's consents."""
    config = _load_config(db_url)
    db = _open_db(config)
    service, client = _build_service(config, db)
    try:
        rows = (
            service.list_active_consents(user_id)
            if active_only
            else service.list_consents(user_id)
        )
    finally:
        client.shutdown()

    table = Table(title=f"Consents for {user_id}")
    table.add_column("ID", style="cyan", overflow="fold")
    table.add_column("FI type")
    table.add_column("Status", no_wrap=True)
    table.add_column("Valid till", no_wrap=True)
    for consent in rows:
        valid_till = (
            f"{consent.valid_till:%Y-%m-%d %H:%M}" if consent.valid_till else "-"
        )
        table.add_row(consent.id, consent.fi_type, consent.status.value, valid_till)
    console.print(table)


@app.command("transactions")
def transactions(
    user_id: str = typer.Argument(..., help="User whose transactions to list"),
    limit: int = typer.Option(50, help="Page size"),
    offset: int = typer.Option(0, help="Rows to skip"),
    db_url: str | None = typer.Option(None, help="Database URL override"),
) -> None:
    """List stored transactions with category overrides applied."""
    config = _load_config(db_url)
    db = _open_db(config)
    service, client = _build_service(config, db)
    try:
        rows, total = service.list_transactions(user_id, limit=limit, offset=offset)
    finally:
        client.shutdown()

    table = Table(title=f"Transactions for {user_id}")
    table.add_column("Posted", no_wrap=True)
    table.add_column("Type", no_wrap=True)
    table.add_column("Amount", justify="right", no_wrap=True)
    table.add_column("Merchant")
    table.add_column("Category")
    table.add_column("Description")
    for txn in rows:
        table.add_row(
            f"{txn.posted_at:%Y-%m-%d %H:%M}",
            txn.txn_type,
            f"{txn.amount:.2f} {txn.currency}",
            txn.merchant_name,
            txn.category,
            txn.description,
        )
    console.print(table)
    typer.echo(f"{len(rows)} of {total} transactions")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
