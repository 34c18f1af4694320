"""Domain test modules for posqa.

Each module groups the test categories of one area of the POS system and
declares its own pass rule:

    sheet_verification  required sheets, column mappings, data types, sheet map
    functional          purchase, sales, menu, stock and permission flows
    api                 endpoint contract, errors, parameters and latency
    performance         response times, caching, load, concurrency, search
    pwa                 service worker, offline queue, background sync, conflicts
    security            authentication, authorization, input handling, CSRF, CORS
    cross_browser       browsers, devices, viewports, installability
    accessibility       WCAG checks on the page markup
    error_handling      network, validation, recovery, conflict and cache errors
    data_integrity      foreign keys, calculations, required fields, data types
    reporting           report retrieval, analytics and export

Example usage:

    from posqa_modules import ALL_MODULES
    from posqa_testcase import ModuleContext

    for module_cls in ALL_MODULES:
        report = await module_cls(context).run_all()
"""

from posqa_modules.accessibility import AccessibilityModule
from posqa_modules.api import ApiModule
from posqa_modules.cross_browser import CrossBrowserModule
from posqa_modules.data_integrity import DataIntegrityModule
from posqa_modules.error_handling import ErrorHandlingModule
from posqa_modules.functional import FunctionalModule
from posqa_modules.performance import PerformanceModule
from posqa_modules.pwa import PwaModule
from posqa_modules.reporting import ReportingModule
from posqa_modules.security import SecurityModule
from posqa_modules.sheet_verification import SheetVerificationModule

ALL_MODULES = (
    SheetVerificationModule,
    FunctionalModule,
    ApiModule,
    PerformanceModule,
    PwaModule,
    SecurityModule,
    CrossBrowserModule,
    AccessibilityModule,
    ErrorHandlingModule,
    DataIntegrityModule,
    ReportingModule,
)

__all__ = [
    "ALL_MODULES",
    "AccessibilityModule",
    "ApiModule",
    "CrossBrowserModule",
    "DataIntegrityModule",
    "ErrorHandlingModule",
    "FunctionalModule",
    "PerformanceModule",
    "PwaModule",
    "ReportingModule",
    "SecurityModule",
    "SheetVerificationModule",
]
