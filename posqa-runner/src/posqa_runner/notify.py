"""Webhook notification after CI runs."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from posqa_core.types.report import ComprehensiveSummary

from posqa_runner.config import WebhookConfig

logger = logging.getLogger(__name__)


def webhook_payload(summary: ComprehensiveSummary, failures: list[str] | None = None) -> dict[str, Any]:
    """Build the JSON body posted to a webhook."""
    totals = summary.totals
    passed = summary.overall_passed and not failures
    return {
        "status": "success" if passed else "failure",
        "timestamp": summary.timestamp.to_iso(),
        "summary": {
            "overall_passed": summary.overall_passed,
            "overall_score": summary.overall_score,
            "scores": dict(summary.scores),
            "total_tests": totals.total,
            "passed": totals.passed,
            "failed": totals.failed,
            "regressions": [r.to_dict() for r in summary.regressions],
            "ci_failures": list(failures or []),
        },
    }


async def notify(
    webhooks: WebhookConfig,
    summary: ComprehensiveSummary,
    failures: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> bool:
    """POST the run result to the configured success or failure webhook.

    A webhook failure is logged and never raised.

    Args:
        webhooks: Configured webhook URLs.
        summary: The run summary.
        failures: CI gate failures; any failure selects ``on_failure``.
        client: Optional httpx client (for testing).
        timeout: Request timeout in seconds.

    Returns:
        True if a webhook was delivered.
    """
    payload = webhook_payload(summary, failures)
    url = webhooks.on_success if payload["status"] == "success" else webhooks.on_failure
    if not url:
        logger.debug("No %s webhook configured", payload["status"])
        return False

    try:
        if client is not None:
            response = await client.post(url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await owned.post(url, json=payload)
        response.raise_for_status()
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Webhook notification to %s failed: %s", url, exc)
        return False

    logger.info("Sent %s webhook to %s", payload["status"], url)
    return True
