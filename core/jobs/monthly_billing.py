"""
Daily entry point for monthly auto-billing.

    python -m core.jobs.monthly_billing [--date YYYY-MM-DD]

Bills the month before --date (default today) for every organization.
Safe to run daily and safe to re-run after a crash: plans already billed
for the period are skipped. SIGTERM/SIGINT stop the run between plans.
"""

import argparse
import logging
import signal
import sys
import threading
from datetime import date

from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_gateway_webhook_secret,
    get_valkey_url,
)
from core.config import BillingConfig

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    # Imported here so main's logging setup applies to the job as well
    from main import build_services

    parser = argparse.ArgumentParser(description="Run monthly auto-billing for all organizations")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Billing date (YYYY-MM-DD)")
    args = parser.parse_args(argv)

    config = BillingConfig()
    postgres = PostgresClient(get_database_url(), statement_timeout_ms=config.statement_timeout_ms)
    valkey = ValkeyClient(get_valkey_url())

    stop_event = threading.Event()

    def request_stop(signum, frame):
        logger.info(f"Signal {signum} received; stopping after the current plan")
        stop_event.set()

    signal.signal(signal.SIGTERM, request_stop)
    signal.signal(signal.SIGINT, request_stop)

    services = build_services(
        postgres,
        webhook_secret=get_gateway_webhook_secret(),
        config=config,
        valkey=valkey,
        email=EmailGatewayClient(**get_email_config()),
    )

    try:
        results = services["monthly_billing"].run_all_orgs(today=args.date, stop_event=stop_event)
    finally:
        valkey.close()
        postgres.close()

    if results is None:
        return 0

    errors = sum(len(result.errors) for result in results.values())
    generated = sum(len(result.generated) for result in results.values())
    logger.info(f"Monthly billing finished: {generated} invoices across {len(results)} orgs, {errors} errors")
    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
