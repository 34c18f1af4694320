"""Shared context handed to every test module."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

from posqa_core.backoff import FaultInjector, SleepFunc
from posqa_core.errors import ConfigurationError

from posqa_store.store import KeyValueStore, MemoryStore

from posqa_testcase.environment import ClientEnvironment

if TYPE_CHECKING:
    from posqa_client.client import PosApiClient
    from posqa_client.config import ApiConfig

logger = logging.getLogger(__name__)


@dataclass
class ModuleContext:
    """Configuration slice and resources shared by the modules of one run.

    The context provides:
    - The POS API client (already opened by the caller)
    - The keyed store standing in for the client's local storage
    - The client environment snapshot
    - Thresholds and fixtures from the run configuration
    - Injectable sleep and fault-injection hooks for simulated behaviour

    Example:
        context = ModuleContext(api=api, store=MemoryStore())
        module = PwaModule(context)
        report = await module.run_all()
    """

    api: PosApiClient | None = None
    store: KeyValueStore = field(default_factory=MemoryStore)
    environment: ClientEnvironment = field(default_factory=ClientEnvironment)
    thresholds: Mapping[str, float] = field(default_factory=dict)
    fixtures: Mapping[str, Any] = field(default_factory=dict)
    sleep: SleepFunc = asyncio.sleep
    faults: Mapping[str, FaultInjector] = field(default_factory=dict)

    @property
    def api_config(self) -> ApiConfig | None:
        """Return the API client configuration, if a client is set."""
        return self.api.config if self.api is not None else None

    def require_api(self) -> PosApiClient:
        """Return the API client.

        Raises:
            ConfigurationError: If no client is set or its URL is empty.
        """
        if self.api is None or not self.api.config.configured:
            raise ConfigurationError("API URL not configured")
        return self.api

    def threshold(self, name: str, default: float) -> float:
        """Return a named threshold, falling back to ``default``."""
        value = self.thresholds.get(name, default)
        return float(value)

    def fixture(self, name: str, default: Any = None) -> Any:
        """Return a named fixture value."""
        return self.fixtures.get(name, default)

    def injector(self, name: str) -> FaultInjector:
        """Return the fault injector registered under ``name``.

        Unregistered names get an injector that never fails.
        """
        injector = self.faults.get(name)
        if injector is None:
            return FaultInjector.never()
        logger.debug("Using fault injector for %s", name)
        return injector
