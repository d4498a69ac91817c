"""
Maintenance Service
Periodic housekeeping run through the job queue

- Purge webhook and request idempotency records past retention
- Move stores with an expired trial, ended cancellation or long past-due
  invoice back to the FREE plan

The job reschedules itself while the queue worker is running.
"""
import logging
from typing import Optional

from app.core.config import settings
from app.core.job_queue import JobQueue
from app.services.idempotency_service import RequestIdempotencyService, WebhookIdempotencyService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

MAINTENANCE_JOB = "maintenance"


class MaintenanceService:

    def __init__(self, queue: JobQueue,
                 webhooks: Optional[WebhookIdempotencyService] = None,
                 requests: Optional[RequestIdempotencyService] = None,
                 subscriptions: Optional[SubscriptionService] = None,
                 interval: Optional[int] = None):
        self.queue = queue
        self.webhooks = webhooks or WebhookIdempotencyService()
        self.requests = requests or RequestIdempotencyService()
        self.subscriptions = subscriptions or SubscriptionService()
        self.interval = interval or settings.MAINTENANCE_INTERVAL_SECONDS

    def run(self, payload=None) -> dict:
        summary = {
            "webhookClaimsPurged": self.webhooks.cleanup_expired(),
            "requestClaimsPurged": self.requests.cleanup_expired(),
            "storesDowngraded": self.subscriptions.downgrade_expired_stores(),
        }
        logger.info(f"Maintenance run: {summary}")

        if self.queue.is_running:
            self.queue.enqueue(MAINTENANCE_JOB, {}, delay=self.interval)
        return summary

    def schedule(self):
        """First run one interval after startup"""
        self.queue.enqueue(MAINTENANCE_JOB, {}, delay=self.interval)


def register_maintenance_handlers(queue: JobQueue, service: Optional[MaintenanceService] = None) -> MaintenanceService:
    service = service or MaintenanceService(queue)
    queue.register_handler(MAINTENANCE_JOB, service.run)
    return service
