import logging
from typing import Any
from uuid import UUID

from arq import cron

from app.core.database import SessionLocal
from app.services.settlement_service import PaymentSettlementService
from app.tasks import redis_settings

logger = logging.getLogger(__name__)


async def process_scheduled_payouts_task(ctx: dict[str, Any]) -> int:
    """Background task: pay out every captured transaction whose payout time has passed.

    Runs every 15 minutes. Each transaction is paid in its own unit of work,
    so one failure does not stop the run.
    """
    db = SessionLocal()
    try:
        service = PaymentSettlementService(db)
        summary = await service.process_scheduled_payouts()
        if summary.processed > 0:
            logger.info(
                "Processed %d scheduled payouts (%d failed)",
                summary.processed,
                summary.failed,
            )
        return summary.succeeded
    finally:
        db.close()


async def expire_abandoned_payments_task(ctx: dict[str, Any]) -> int:
    """Background task: cancel payments the payer never approved.

    Runs every 5 minutes.
    """
    db = SessionLocal()
    try:
        service = PaymentSettlementService(db)
        return await service.expire_abandoned_payments()
    finally:
        db.close()


async def create_owner_payout_task(ctx: dict[str, Any], transaction_id: str) -> bool:
    """Background task: pay out a single transaction on demand."""
    db = SessionLocal()
    try:
        service = PaymentSettlementService(db)
        result = await service.create_owner_payout(UUID(transaction_id))
        if not result.success:
            logger.warning(
                "On-demand payout for transaction %s failed: %s",
                transaction_id,
                result.error_message,
            )
        return result.success
    finally:
        db.close()


class WorkerSettings:
    functions = [
        process_scheduled_payouts_task,
        expire_abandoned_payments_task,
        create_owner_payout_task,
    ]
    cron_jobs = [
        cron(process_scheduled_payouts_task, minute={0, 15, 30, 45}),
        cron(
            expire_abandoned_payments_task,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
        ),
    ]
    redis_settings = redis_settings
