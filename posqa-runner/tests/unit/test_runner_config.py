"""Tests for run configuration loading."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from posqa_runner.config import (
    DEFAULT_REQUIREMENTS,
    DEFAULT_THRESHOLDS,
    MODULE_KEYS,
    RunnerConfig,
    apply_env_overrides,
    default_config,
    load_config,
    parse_config,
)

from posqa_modules import ALL_MODULES


@pytest.fixture
def run_yaml(tmp_path: Path) -> Path:
    """Create a valid run config YAML file."""
    page = tmp_path / "index.html"
    page.write_text("<html lang='th'><title>POS</title></html>")
    config = tmp_path / "posqa.yaml"
    config.write_text(
        textwrap.dedent("""\
        environment:
          api_url: "https://pos.example.com/exec"
          timeout: 5
          retries: 2
          concurrency: 2

        modules:
          accessibility: false
          reporting: false

        thresholds:
          success_rate: 90
          api_response_ms: 1500

        reporting:
          formats: [html, csv]
          output_dir: "out"
          history_size: 5

        ci:
          enabled: true
          regression_threshold: 3
          required_tests: [api, security]
          webhooks:
            on_failure: "https://hooks.example.com/posqa"

        monitor:
          interval_ms: 60000
          window: 10

        client:
          html_path: "index.html"

        fixtures:
          search_terms: [rice]

        store:
          path: "data/posqa.db"
        """)
    )
    return config


class TestLoadConfig:
    """Tests for load_config."""

    def test_loads_valid_config(self, run_yaml: Path) -> None:
        config = load_config(run_yaml)

        assert config.source_path == run_yaml
        assert config.environment.api_url == "https://pos.example.com/exec"
        assert config.environment.timeout == 5.0
        assert config.environment.concurrency == 2
        assert config.reporting.formats == ("html", "csv")
        assert config.reporting.history_size == 5
        assert config.monitor.interval_ms == 60000
        assert config.monitor.window == 10
        assert config.fixtures == {"search_terms": ["rice"]}

    def test_module_selection(self, run_yaml: Path) -> None:
        config = load_config(run_yaml)
        assert "accessibility" not in config.enabled_modules
        assert "reporting" not in config.enabled_modules
        assert config.enabled_modules[0] == MODULE_KEYS[0]
        assert len(config.enabled_modules) == len(MODULE_KEYS) - 2

    def test_thresholds_merge_with_defaults(self, run_yaml: Path) -> None:
        config = load_config(run_yaml)
        assert config.threshold("success_rate") == 90.0
        assert config.threshold("api_response_ms") == 1500.0
        assert config.threshold("performance") == DEFAULT_THRESHOLDS["performance"]

    def test_ci_section(self, run_yaml: Path) -> None:
        config = load_config(run_yaml)
        assert config.ci.enabled
        assert config.ci.fail_on_regression
        assert config.ci.regression_threshold == 3.0
        assert config.ci.required_tests == ("api", "security")
        assert config.ci.webhooks.on_failure == "https://hooks.example.com/posqa"
        assert config.ci.webhooks.on_success is None

    def test_relative_paths_resolve_against_config(self, run_yaml: Path) -> None:
        config = load_config(run_yaml)
        assert config.client.html == "<html lang='th'><title>POS</title></html>"
        assert config.store_path == str(run_yaml.parent / "data/posqa.db")

    def test_api_config(self, run_yaml: Path) -> None:
        api = load_config(run_yaml).environment.api_config()
        assert api.configured
        assert api.timeout == 5.0
        assert api.retry.max_attempts == 3

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="YAML mapping"):
            load_config(path)

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        config = load_config(path)
        assert config.enabled_modules == list(MODULE_KEYS)
        assert config.store_path == ":memory:"

    def test_missing_html_path(self, tmp_path: Path) -> None:
        path = tmp_path / "posqa.yaml"
        path.write_text("client:\n  html_path: nowhere.html\n")
        with pytest.raises(FileNotFoundError):
            load_config(path)


class TestParseConfig:
    """Validation errors raised by parse_config."""

    def test_unknown_module(self) -> None:
        with pytest.raises(ValueError, match="Unknown module: payments"):
            parse_config({"modules": {"payments": True}})

    def test_unknown_required_test(self) -> None:
        with pytest.raises(ValueError, match="ci.required_tests"):
            parse_config({"ci": {"required_tests": ["payments"]}})

    def test_unknown_format(self) -> None:
        with pytest.raises(ValueError, match="Unknown report format: pdf"):
            parse_config({"reporting": {"formats": ["pdf"]}})

    def test_formats_as_string(self) -> None:
        config = parse_config({"reporting": {"formats": "json, csv"}})
        assert config.reporting.formats == ("json", "csv")

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ValueError, match="thresholds must be a mapping"):
            parse_config({"thresholds": [1, 2]})

    def test_threshold_must_be_number(self) -> None:
        with pytest.raises(ValueError, match="Threshold success_rate"):
            parse_config({"thresholds": {"success_rate": "high"}})

    def test_concurrency_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="environment.concurrency"):
            parse_config({"environment": {"concurrency": 0}})

    def test_monitor_window(self) -> None:
        with pytest.raises(ValueError, match="monitor.window"):
            parse_config({"monitor": {"window": 1}})

    def test_requirements_replace_catalog(self) -> None:
        config = parse_config({"requirements": {"3.1": "Purchases"}})
        assert config.requirements == {"3.1": "Purchases"}


class TestDefaults:
    """Tests for default_config and the built-in catalog."""

    def test_default_config(self) -> None:
        config = default_config()
        assert isinstance(config, RunnerConfig)
        assert config.environment.api_url == ""
        assert config.reporting.formats == ("html", "json", "csv")
        assert config.reporting.history_size == 10
        assert config.monitor.interval_ms == 300_000
        assert config.monitor.window == 288
        assert config.ci.regression_threshold == 5.0

    def test_catalog_matches_module_declarations(self) -> None:
        """Every numbered requirement a module declares has a catalog entry."""
        declared = {
            ref for module in ALL_MODULES for ref in module.requirements if not ref.startswith("wcag-")
        }
        assert declared == set(DEFAULT_REQUIREMENTS)


class TestEnvOverrides:
    """Tests for apply_env_overrides."""

    def test_api_url_override(self) -> None:
        config = apply_env_overrides(default_config(), {"POSQA_API_URL": "https://other.example.com"})
        assert config.environment.api_url == "https://other.example.com"

    def test_no_override(self) -> None:
        config = default_config()
        assert apply_env_overrides(config, {}) is config
