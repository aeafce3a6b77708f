"""HTTP entrypoint for scheduled batch triggers and the read-only map API."""

from __future__ import annotations

import hmac
import logging
import os
from typing import Any, Dict, Iterable, Mapping, Optional

from flask import Flask, jsonify, request

from beacon.core.config import Settings, get_settings
from beacon.core.db import Store
from beacon.etl.transform import to_business_payload
from beacon.jobs.check_batch import run_check_job
from beacon.jobs.submit_batch import run_submit_job

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_CITY = "atlanta"
MAX_LOG_LIMIT = 500


def is_authorized(header: Optional[str], secret: str) -> bool:
    """Constant-time bearer check. An empty configured secret rejects everything."""
    if not secret or not header:
        return False
    return hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


def summarize_batch_logs(logs: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "totalBatches": 0,
        "completedBatches": 0,
        "pendingBatches": 0,
        "failedBatches": 0,
        "totalTargets": 0,
        "totalSuccesses": 0,
        "totalErrors": 0,
        "totalTokens": 0,
        "totalCost": 0.0,
    }
    for log in logs:
        summary["totalBatches"] += 1
        status = log.get("status")
        if status == "completed":
            summary["completedBatches"] += 1
            summary["totalTargets"] += log.get("target_count") or 0
            summary["totalSuccesses"] += log.get("success_count") or 0
            summary["totalErrors"] += log.get("error_count") or 0
            summary["totalTokens"] += log.get("total_tokens") or 0
            summary["totalCost"] += log.get("cost_estimate") or 0.0
        elif status == "submitted":
            summary["pendingBatches"] += 1
        else:
            summary["failedBatches"] += 1

    attempted = summary["totalSuccesses"] + summary["totalErrors"]
    summary["successRate"] = round(summary["totalSuccesses"] / attempted, 4) if attempted else None
    summary["totalCost"] = round(summary["totalCost"], 6)
    return summary


def create_app(store: Store, settings: Optional[Settings] = None) -> Flask:
    settings = settings or get_settings()
    app = Flask(__name__)

    def _unauthorized():
        return jsonify({"error": "Unauthorized"}), 401

    # ---------- Routes ----------

    @app.get("/healthz")
    def healthcheck() -> Any:
        return (
            jsonify(
                {
                    "status": "ok",
                    "worker_port_config": settings.worker_port,
                    "revision": os.getenv("K_REVISION", "unknown"),
                }
            ),
            200,
        )

    @app.route("/cron/submit-batch", methods=["GET", "POST"])
    def submit_batch() -> Any:
        if not is_authorized(request.headers.get("Authorization"), settings.cron_secret):
            return _unauthorized()
        try:
            result = run_submit_job(store, settings=settings)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Submit batch failed: %s", exc)
            return jsonify({"error": "Failed to submit batch", "details": str(exc)}), 500

        if result.batch_id is None:
            return jsonify({"message": "No targets need scoring"}), 200
        return (
            jsonify(
                {
                    "message": f"Created batch {result.batch_id}",
                    "batch_id": result.batch_id,
                    "targets_count": result.target_count,
                }
            ),
            200,
        )

    @app.route("/cron/check-batch", methods=["GET", "POST"])
    def check_batch() -> Any:
        if not is_authorized(request.headers.get("Authorization"), settings.cron_secret):
            return _unauthorized()
        try:
            result = run_check_job(store, settings=settings)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Check batch failed: %s", exc)
            return jsonify({"error": "Failed to check batches", "details": str(exc)}), 500

        if not result.pending:
            return jsonify({"message": "No pending batches"}), 200
        return (
            jsonify(
                {
                    "message": f"Processed {result.processed} completed batches",
                    "processed_batches": result.processed,
                    "closed_batches": result.closed,
                    "failed_batches": result.failed,
                    "pending_batches": result.pending,
                }
            ),
            500 if result.failed else 200,
        )

    @app.get("/api/businesses")
    def businesses() -> Any:
        city = (request.args.get("city") or DEFAULT_CITY).strip().lower()
        city_filter = None if city == "all" else city
        try:
            rows = store.enriched_targets(city_filter)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error fetching enriched businesses: %s", exc)
            return jsonify({"success": False, "error": "Failed to fetch business data", "details": str(exc)}), 500

        data = [to_business_payload(row) for row in rows]
        return jsonify({"success": True, "data": data, "count": len(data), "city": city}), 200

    @app.get("/api/batch-logs")
    def batch_logs() -> Any:
        limit_raw = request.args.get("limit", "50")
        try:
            limit = int(limit_raw)
        except (TypeError, ValueError):
            return jsonify({"success": False, "error": "limit must be numeric"}), 400
        if limit <= 0:
            return jsonify({"success": False, "error": "limit must be positive"}), 400
        limit = min(limit, MAX_LOG_LIMIT)

        try:
            logs = store.batch_logs(limit)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error fetching batch logs: %s", exc)
            return jsonify({"success": False, "error": "Failed to fetch batch logs", "details": str(exc)}), 500

        return jsonify({"success": True, "logs": logs, "summary": summarize_batch_logs(logs), "count": len(logs)}), 200

    return app


def main() -> None:
    settings = get_settings()
    port = int(os.getenv("PORT") or settings.worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)

    with Store.open(settings.database_url) as store:
        store.ensure_schema()
        app = create_app(store, settings)
        app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
