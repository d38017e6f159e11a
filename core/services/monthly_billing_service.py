"""
Monthly auto-billing of recurring service plans.

For each active plan, the completed visits of the previous calendar month
become one line each on a single invoice, issued straight to sent. A plan
is billed at most once per period: the dedup check finds an earlier
invoice for (plan, period), and a unique index on the invoice metadata
backs it up if two runs race. That makes an interrupted batch safe to
simply run again.
"""

import logging
import threading
from datetime import date
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from core.billing_period import BillingPeriod
from core.config import BillingConfig
from core.exceptions import (
    DuplicatePeriodError,
    InvalidStateError,
    NoCompletedVisitsError,
    NotFoundError,
)
from core.models import (
    BatchResult,
    GeneratedInvoice,
    Invoice,
    PlanError,
    ServicePlan,
    ServicePlanStatus,
    SkippedPlan,
    Visit,
)
from core.money import LineItem
from core.services.invoice_service import InvoiceService
from utils.org_context import get_current_org_id, org_context
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

BATCH_LOCK_KEY = "lock:monthly-billing"

SKIP_ALREADY_INVOICED = "already invoiced for period"
SKIP_NO_VISITS = "no completed visits"


class MonthlyBillingService:
    """Generates invoices for service plans, one per plan per period."""

    def __init__(
        self,
        postgres: PostgresClient,
        invoices: InvoiceService,
        config: BillingConfig | None = None,
        valkey: ValkeyClient | None = None,
    ):
        self.postgres = postgres
        self.invoices = invoices
        self.config = config or BillingConfig()
        self.valkey = valkey

    @staticmethod
    def previous_period(today: date | None = None) -> BillingPeriod:
        """First to last day of the month before today."""
        return BillingPeriod.previous_month(today or now_utc().date())

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def get_plan(self, plan_id: UUID) -> ServicePlan | None:
        """Service plan with its client taken from the pool."""
        row = self.postgres.execute_single(
            """
            SELECT sp.id, sp.org_id, sp.pool_id, p.client_id, sp.name,
                   sp.price_cents, sp.tax_pct, sp.currency, sp.status
            FROM service_plans sp
            JOIN pools p ON p.id = sp.pool_id AND p.org_id = sp.org_id
            WHERE sp.id = %s AND sp.org_id = %s
            """,
            (plan_id, get_current_org_id())
        )
        if row is None:
            return None
        return ServicePlan.model_validate(row)

    def completed_visits(self, plan_id: UUID, period: BillingPeriod) -> list[Visit]:
        """Completed visits of the plan's jobs within the period, in completion order."""
        rows = self.postgres.execute(
            """
            SELECT v.id, v.job_id, v.status, v.completed_at
            FROM visits v
            JOIN jobs j ON j.id = v.job_id AND j.org_id = v.org_id
            WHERE j.plan_id = %s
              AND v.org_id = %s
              AND v.status = 'completed'
              AND v.completed_at >= %s
              AND v.completed_at < %s
            ORDER BY v.completed_at ASC
            """,
            (plan_id, get_current_org_id(), period.starts_at, period.ends_before)
        )
        return [Visit.model_validate(row) for row in rows]

    def find_period_invoice(self, plan_id: UUID, period: BillingPeriod) -> Invoice | None:
        """An existing invoice for this plan whose billed period starts inside `period`."""
        row = self.postgres.execute_single(
            """
            SELECT * FROM invoices
            WHERE org_id = %s
              AND metadata->>'servicePlanId' = %s
              AND (metadata->>'periodStart')::date BETWEEN %s AND %s
            ORDER BY created_at ASC
            LIMIT 1
            """,
            (get_current_org_id(), str(plan_id), period.start, period.end)
        )
        if row is None:
            return None
        return Invoice.model_validate(row)

    # =========================================================================
    # GENERATION
    # =========================================================================

    def generate_for_plan(
        self,
        plan_id: UUID,
        period: BillingPeriod,
        billing_date: date | None = None,
    ) -> Invoice:
        """
        Bill one plan for one period.

        Raises:
            NotFoundError: If the plan does not exist
            InvalidStateError: If the plan is paused
            DuplicatePeriodError: If the plan already has an invoice for the period
            NoCompletedVisitsError: If nothing was completed in the period
        """
        plan = self.get_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Service plan {plan_id} not found", code="SERVICE_PLAN_NOT_FOUND")
        if plan.status != ServicePlanStatus.ACTIVE:
            raise InvalidStateError(f"Service plan {plan_id} is {plan.status.value}")

        existing = self.find_period_invoice(plan_id, period)
        if existing is not None:
            raise DuplicatePeriodError(
                f"Service plan {plan_id} already invoiced for {period.label()} "
                f"as {existing.invoice_number}"
            )

        visits = self.completed_visits(plan_id, period)
        if not visits:
            raise NoCompletedVisitsError(
                f"Service plan {plan_id} has no completed visits in {period.label()}"
            )

        service_name = plan.name or "Pool service"
        items = [
            LineItem(
                label=f"{service_name} visit {visit.completed_at:%d %b %Y}",
                qty=1,
                unit_price_cents=plan.price_cents,
                tax_pct=plan.tax_pct,
            )
            for visit in visits
        ]

        return self.invoices.create_for_billing_period(
            client_id=plan.client_id,
            pool_id=plan.pool_id,
            items=items,
            currency=plan.currency,
            billing_date=billing_date or now_utc().date(),
            metadata={
                "servicePlanId": str(plan.id),
                "periodStart": period.start.isoformat(),
                "periodEnd": period.end.isoformat(),
                "visitCount": len(visits),
                "autoGenerated": True,
            },
        )

    def list_active_plan_ids(self) -> list[UUID]:
        rows = self.postgres.execute(
            "SELECT id FROM service_plans WHERE org_id = %s AND status = %s ORDER BY created_at, id",
            (get_current_org_id(), ServicePlanStatus.ACTIVE.value)
        )
        return [row["id"] for row in rows]

    def run_batch(
        self,
        period: BillingPeriod | None = None,
        billing_date: date | None = None,
        stop_event: threading.Event | None = None,
    ) -> BatchResult:
        """
        Bill every active plan of the current org.

        Each plan is handled on its own; a failure is recorded and the batch
        moves on. stop_event is checked between plans, never mid-plan.
        """
        period = period or self.previous_period()
        result = BatchResult()

        plan_ids = self.list_active_plan_ids()
        logger.info(f"Monthly billing for {period.label()}: {len(plan_ids)} active plans")

        for plan_id in plan_ids:
            if stop_event is not None and stop_event.is_set():
                logger.info("Monthly billing stopped before all plans were processed")
                result.stopped = True
                break

            try:
                invoice = self.generate_for_plan(plan_id, period, billing_date=billing_date)
            except DuplicatePeriodError:
                result.skipped.append(SkippedPlan(service_plan_id=plan_id, reason=SKIP_ALREADY_INVOICED))
                continue
            except NoCompletedVisitsError:
                result.skipped.append(SkippedPlan(service_plan_id=plan_id, reason=SKIP_NO_VISITS))
                continue
            except Exception as e:
                logger.exception(f"Monthly billing failed for plan {plan_id}")
                result.errors.append(PlanError(service_plan_id=plan_id, error=str(e)))
                continue

            result.generated.append(GeneratedInvoice(
                service_plan_id=plan_id,
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                total_cents=invoice.total_cents,
                visit_count=invoice.metadata.get("visitCount", len(invoice.items)),
            ))

        logger.info(
            f"Monthly billing for {period.label()} done: {len(result.generated)} generated, "
            f"{len(result.skipped)} skipped, {len(result.errors)} errors"
        )
        return result

    def run_all_orgs(
        self,
        today: date | None = None,
        stop_event: threading.Event | None = None,
    ) -> dict[UUID, BatchResult] | None:
        """
        Run the batch for every organization under a cluster-wide lock.

        Returns None without doing anything if another worker holds the lock.

        Raises:
            RuntimeError: If no Valkey client was configured
        """
        if self.valkey is None:
            raise RuntimeError("run_all_orgs requires a Valkey client for the batch lock")

        owner = str(uuid4())
        if not self.valkey.acquire_lock(BATCH_LOCK_KEY, owner, self.config.batch_lock_ttl_seconds):
            logger.info("Monthly billing already running elsewhere; skipping")
            return None

        today = today or now_utc().date()
        period = self.previous_period(today)
        results: dict[UUID, BatchResult] = {}

        try:
            # organizations has no RLS; it is readable without an org context
            org_rows = self.postgres.execute("SELECT id FROM organizations ORDER BY created_at, id")

            for org_row in org_rows:
                if stop_event is not None and stop_event.is_set():
                    break
                with org_context(org_row["id"]):
                    try:
                        results[org_row["id"]] = self.run_batch(
                            period=period, billing_date=today, stop_event=stop_event
                        )
                    except Exception:
                        logger.exception(f"Monthly billing failed for org {org_row['id']}")
        finally:
            self.valkey.release_lock(BATCH_LOCK_KEY, owner)

        return results
