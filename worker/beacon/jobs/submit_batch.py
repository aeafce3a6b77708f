"""Select stale targets and submit them to the provider as one batch."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from beacon.core.config import Settings, get_settings
from beacon.core.db import Store
from beacon.core.models import Target
from beacon.etl.request_builder import build_batch_jsonl
from beacon.vendors import openai_batch

logger = logging.getLogger(__name__)

STALENESS_THRESHOLD = timedelta(days=7)


@dataclass(frozen=True)
class SubmitResult:
    batch_id: Optional[str]
    target_count: int


def staleness_cutoff(now: Optional[datetime] = None, threshold: timedelta = STALENESS_THRESHOLD) -> datetime:
    """Scores updated before the returned instant need refreshing."""
    now = now or datetime.now(timezone.utc)
    return now - threshold


def select_targets(
    store: Store,
    limit: int,
    *,
    threshold: timedelta = STALENESS_THRESHOLD,
    now: Optional[datetime] = None,
) -> List[Target]:
    """Up to ``limit`` targets with no score or a stale one.

    Order is by target id, so when more targets are stale than ``limit`` the
    same leading subset is picked until it has been scored.
    """
    if limit <= 0:
        return []
    return store.select_targets_needing_score(limit, staleness_cutoff(now, threshold))


def submit_batch(store: Store, document: str, target_ids: List[str], settings: Optional[Settings] = None) -> str:
    """Upload ``document``, create the provider batch and record it.

    Provider errors propagate; nothing is written unless the batch exists.
    """
    if not target_ids:
        raise ValueError("target_ids must not be empty")
    settings = settings or get_settings()

    file_id = openai_batch.upload_file(document, api_key=settings.openai_api_key)
    batch_id = openai_batch.create_batch(
        file_id,
        api_key=settings.openai_api_key,
        endpoint=openai_batch.RESPONSES_ENDPOINT,
        completion_window=settings.completion_window,
    )
    store.record_batch_start(batch_id, target_ids)
    return batch_id


def run_submit_job(store: Store, *, limit: Optional[int] = None, settings: Optional[Settings] = None) -> SubmitResult:
    settings = settings or get_settings()
    limit = settings.batch_size if limit is None else limit

    targets = select_targets(store, limit, threshold=timedelta(days=settings.staleness_days))
    if not targets:
        logger.info("No targets need scoring")
        return SubmitResult(batch_id=None, target_count=0)

    logger.info("Found %d targets needing scores", len(targets))
    document = build_batch_jsonl(targets, model=settings.model, max_output_tokens=settings.max_output_tokens)
    batch_id = submit_batch(store, document, [target.target_id for target in targets], settings=settings)
    return SubmitResult(batch_id=batch_id, target_count=len(targets))
