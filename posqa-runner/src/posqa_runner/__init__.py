"""Test orchestration and reporting for posqa.

This package loads the run configuration, runs the enabled test modules
concurrently, merges their reports into a comprehensive summary, detects
regressions against the stored history, renders HTML/JSON/CSV reports,
monitors continuously and notifies CI webhooks.

Example:
    posqa --config posqa.yaml --ci all
"""

from posqa_runner.config import (
    CiConfig,
    EnvironmentConfig,
    MonitorConfig,
    ReportingConfig,
    RunnerConfig,
    WebhookConfig,
    apply_env_overrides,
    default_config,
    load_config,
    parse_config,
)
from posqa_runner.monitor import Monitor
from posqa_runner.notify import notify, webhook_payload
from posqa_runner.orchestrator import (
    REGISTRY,
    TestOrchestrator,
    aggregate_coverage,
    ci_failures,
    detect_regressions,
    find_gaps,
)
from posqa_runner.report import render_csv, render_html, render_json, write_reports

__all__ = [
    # Config
    "CiConfig",
    "EnvironmentConfig",
    "MonitorConfig",
    "ReportingConfig",
    "RunnerConfig",
    "WebhookConfig",
    "apply_env_overrides",
    "default_config",
    "load_config",
    "parse_config",
    # Orchestration
    "REGISTRY",
    "TestOrchestrator",
    "aggregate_coverage",
    "ci_failures",
    "detect_regressions",
    "find_gaps",
    # Monitoring
    "Monitor",
    # Reports
    "render_csv",
    "render_html",
    "render_json",
    "write_reports",
    # Notification
    "notify",
    "webhook_payload",
]
