from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task

from ledger.gateway import build_ledger_gateway

from .pdf import CertificatePdfRenderer
from .services.anchoring import AnchoringCoordinator


logger = logging.getLogger(__name__)

ANCHOR_MAX_RETRIES = 3


def _coordinator() -> AnchoringCoordinator:
    return AnchoringCoordinator(build_ledger_gateway(), renderer=CertificatePdfRenderer())


def _retry_countdown(retries: int) -> int:
    return min(600, 30 * (2**retries))


@shared_task(bind=True, max_retries=ANCHOR_MAX_RETRIES)
def anchor_certificate(self, certificate_id: int) -> dict:
    outcome = _coordinator().anchor(certificate_id)

    # A transient ledger failure leaves the certificate FAILED; the retry takes it
    # back through the FAILED -> PROCESSING claim like any other trigger.
    if outcome.retryable and self.request.retries < self.max_retries:
        logger.info(
            "anchoring.retry_scheduled",
            extra={"certificate_id": certificate_id, "retries": self.request.retries, "kind": outcome.error.kind.value},
        )
        raise self.retry(countdown=_retry_countdown(self.request.retries))
    return outcome.as_dict()


@shared_task(bind=True, max_retries=ANCHOR_MAX_RETRIES)
def anchor_certificate_batch(self, certificate_ids: list[int]) -> dict:
    outcome = _coordinator().anchor_batch(certificate_ids)

    if outcome.retryable and self.request.retries < self.max_retries:
        logger.info(
            "anchoring.batch_retry_scheduled",
            extra={"certificate_ids": outcome.failed_ids, "retries": self.request.retries},
        )
        raise self.retry(args=[outcome.failed_ids], countdown=_retry_countdown(self.request.retries))
    return outcome.as_dict()


@shared_task
def reconcile_stuck_anchoring(older_than_minutes: int | None = None) -> list[int]:
    older_than = timedelta(minutes=older_than_minutes) if older_than_minutes is not None else None
    # The sweep never talks to the ledger.
    failed = AnchoringCoordinator(gateway=None).sweep_stuck(older_than=older_than)
    if failed:
        logger.warning("anchoring.stuck_swept", extra={"certificate_ids": failed})
    return failed
