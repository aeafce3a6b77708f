"""Poll submitted batches, persist scores from completed ones and finalize them."""

import logging
from dataclasses import dataclass
from typing import Optional

import psycopg2

from beacon.core.config import Settings, get_settings
from beacon.core.db import Store
from beacon.core.models import BatchJob, BatchMetadata, JobStatus, Provenance
from beacon.etl.result_parser import FailureKind, ItemFailure, parse_result_line
from beacon.vendors import openai_batch

logger = logging.getLogger(__name__)

TOKENS_PER_SUCCESS_ESTIMATE = 200
COST_PER_1K_TOKENS = 0.0015


@dataclass(frozen=True)
class PollResult:
    pending: int
    processed: int
    closed: int
    failed: int = 0


def estimate_usage(success_count: int, reported_tokens: Optional[int]):
    """Return ``(total_tokens, cost_estimate)`` for a finished batch."""
    total_tokens = reported_tokens if reported_tokens else success_count * TOKENS_PER_SUCCESS_ESTIMATE
    return total_tokens, total_tokens / 1000 * COST_PER_1K_TOKENS


def finalize_batch(store: Store, batch_id: str, metadata: BatchMetadata) -> bool:
    finalized = store.complete_batch(batch_id, metadata)
    if finalized:
        logger.info(
            "Batch %s: %d success, %d errors, ~$%.3f",
            batch_id,
            metadata.success_count,
            metadata.error_count,
            metadata.cost_estimate,
        )
    else:
        logger.warning("Batch %s was already finalized; counts not overwritten", batch_id)
    return finalized


def close_unsuccessful_batch(store: Store, batch_id: str, provider_status: str) -> bool:
    status = JobStatus(provider_status)
    closed = store.close_batch(batch_id, status)
    if closed:
        logger.warning("Batch %s ended as %s without results", batch_id, status.value)
    return closed


def fetch_results(info: openai_batch.BatchStatus, api_key: str) -> str:
    """Download the output file and, when present, the file of failed requests."""
    file_ids = [file_id for file_id in (info.output_file_id, info.error_file_id) if file_id]
    if not file_ids:
        raise openai_batch.OpenAIBatchError(f"completed batch {info.batch_id} has no result files")
    parts = [openai_batch.download_file(file_id, api_key=api_key) for file_id in file_ids]
    return "\n".join(part.rstrip("\n") for part in parts)


def process_batch_output(store: Store, job: BatchJob, text: str, default_model: str):
    """Upsert every valid line of ``text``. Returns ``(success_count, error_count)``."""
    success_count = 0
    error_count = 0
    known_targets = set(job.target_ids)

    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            record, model = parse_result_line(line)
            if known_targets and record.target_id not in known_targets:
                raise ItemFailure(
                    FailureKind.UNKNOWN_TARGET,
                    "target was not submitted in this batch",
                    target_id=record.target_id,
                )
        except ItemFailure as failure:
            logger.warning(
                "Item failure in batch %s for %s (%s): %s",
                job.batch_id,
                failure.target_id,
                failure.kind.value,
                failure,
            )
            error_count += 1
            continue

        try:
            store.upsert_score(record, Provenance(model=model or default_model, batch_id=job.batch_id))
        except psycopg2.Error as exc:
            logger.error("Failed to upsert score for %s in batch %s: %s", record.target_id, job.batch_id, exc)
            error_count += 1
            continue
        success_count += 1

    return success_count, error_count


def poll_batch(store: Store, job: BatchJob, settings: Settings) -> str:
    """Handle one pending job; returns the provider status that was observed."""
    info = openai_batch.get_batch(job.batch_id, api_key=settings.openai_api_key)

    if info.is_unsuccessful:
        close_unsuccessful_batch(store, job.batch_id, info.status)
        return info.status
    if not info.is_complete:
        logger.info("Batch %s still %s", job.batch_id, info.status)
        return info.status

    logger.info("Processing completed batch: %s", job.batch_id)
    # a failed download aborts this whole batch; it stays submitted for the next poll
    text = fetch_results(info, settings.openai_api_key)

    success_count, error_count = process_batch_output(store, job, text, settings.model)
    total_tokens, cost_estimate = estimate_usage(success_count, info.total_tokens)
    finalize_batch(
        store,
        job.batch_id,
        BatchMetadata(
            output_file_id=info.output_file_id,
            success_count=success_count,
            error_count=error_count,
            total_tokens=total_tokens,
            cost_estimate=cost_estimate,
        ),
    )
    return info.status


def run_check_job(store: Store, settings: Optional[Settings] = None) -> PollResult:
    """Poll every submitted batch sequentially.

    A transport or storage error aborts only the job it happened on: scores
    already written for it stand, it stays submitted for the next run, and
    the remaining jobs are still polled.
    """
    settings = settings or get_settings()
    jobs = store.pending_batches()
    if not jobs:
        logger.info("No pending batches")
        return PollResult(pending=0, processed=0, closed=0)

    processed = 0
    closed = 0
    failed = 0
    for job in jobs:
        try:
            status = poll_batch(store, job, settings)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Polling batch %s failed: %s", job.batch_id, exc)
            failed += 1
            continue
        if status == openai_batch.COMPLETED:
            processed += 1
        elif status in openai_batch.UNSUCCESSFUL_STATUSES:
            closed += 1

    logger.info(
        "Processed %d completed batches out of %d pending (%d failed)",
        processed,
        len(jobs),
        failed,
    )
    return PollResult(pending=len(jobs), processed=processed, closed=closed, failed=failed)
