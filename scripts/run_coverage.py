#!/usr/bin/env python3
"""Coverage runner for the posqa packages.

Runs the unit tests of every package with coverage, then combines the
per-package data into one terminal, HTML and JSON report. Tests marked
``uses_mock`` (auto-detected by the root conftest) can be excluded to see
how much of the harness is exercised without a faked backend.

Usage:
    # Run all unit tests with coverage
    python scripts/run_coverage.py

    # Run specific packages
    python scripts/run_coverage.py --package posqa-core --package posqa-runner

    # Only tests that don't fake the HTTP backend
    python scripts/run_coverage.py --no-mocks

    # Open HTML report in browser
    python scripts/run_coverage.py --open
"""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
import webbrowser
from pathlib import Path

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent
COVERAGE_DIR = PROJECT_ROOT / "coverage"

# All packages in the monorepo, leaves first
PACKAGES = [
    "posqa-core",
    "posqa-client",
    "posqa-store",
    "posqa-testcase",
    "posqa-modules",
    "posqa-runner",
]


def run_package(pkg: str, no_mocks: bool, verbose: bool) -> Path | None:
    """Run one package's unit tests under coverage.

    Args:
        pkg: Package directory name.
        no_mocks: Deselect tests marked ``uses_mock``.
        verbose: Pass ``-v`` to pytest.

    Returns:
        The coverage data file, or None if the package has no unit tests.

    Raises:
        subprocess.CalledProcessError: If pytest reports failures.
    """
    pkg_path = PROJECT_ROOT / pkg
    test_path = pkg_path / "tests" / "unit"
    if not test_path.exists():
        return None

    print(f"\n{'=' * 60}")
    print(f"Testing: {pkg}")
    print(f"{'=' * 60}")

    cov_file = COVERAGE_DIR / f".coverage.{pkg}"
    cmd = [
        sys.executable,
        "-m",
        "pytest",
        f"--cov={pkg_path / 'src'}",
        "--cov-report=",
        "--cov-context=test",
        str(test_path),
    ]
    if no_mocks:
        cmd.extend(["-m", "not uses_mock"])
    if verbose:
        cmd.append("-v")

    env = dict(os.environ)
    env["COVERAGE_FILE"] = str(cov_file)
    result = subprocess.run(cmd, cwd=PROJECT_ROOT, env=env, check=False)
    # pytest exits 5 when every test was deselected
    if result.returncode not in (0, 5):
        raise subprocess.CalledProcessError(result.returncode, cmd)
    return cov_file


def combine(coverage_files: list[Path]) -> None:
    """Combine per-package data and write terminal, HTML and JSON reports."""
    existing = [str(f) for f in coverage_files if f.exists()]
    if not existing:
        print("No coverage data collected.")
        return

    env = dict(os.environ)
    env["COVERAGE_FILE"] = str(COVERAGE_DIR / ".coverage")

    def coverage(*args: str) -> None:
        subprocess.run([sys.executable, "-m", "coverage", *args], cwd=PROJECT_ROOT, env=env, check=False)

    coverage("combine", "--keep", *existing)
    coverage("report", "--show-missing")
    coverage("html", "-d", str(COVERAGE_DIR / "html"))
    coverage("json", "-o", str(COVERAGE_DIR / "coverage.json"))
    print(f"\nCoverage HTML report: {COVERAGE_DIR / 'html' / 'index.html'}")


def print_package_totals() -> None:
    """Print the combined coverage percentage of each package."""
    coverage_json = COVERAGE_DIR / "coverage.json"
    if not coverage_json.exists():
        return
    with open(coverage_json, encoding="utf-8") as f:
        data = json.load(f)

    totals: dict[str, list[int]] = {pkg: [0, 0] for pkg in PACKAGES}
    for filename, file_data in data.get("files", {}).items():
        for pkg in PACKAGES:
            if f"{pkg}/src/" in filename:
                summary = file_data.get("summary", {})
                totals[pkg][0] += summary.get("covered_lines", 0)
                totals[pkg][1] += summary.get("num_statements", 0)

    print("\nPer-package coverage:")
    for pkg, (covered, statements) in totals.items():
        if statements:
            print(f"  {pkg:<16} {covered / statements * 100:5.1f}%  ({covered}/{statements})")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run posqa unit tests with coverage")
    parser.add_argument(
        "--package", "-p", action="append", choices=PACKAGES,
        help="Package to test (repeatable; default: all)"
    )
    parser.add_argument("--no-mocks", action="store_true", help="Skip tests marked uses_mock")
    parser.add_argument("--quiet", "-q", action="store_true", help="Less pytest output")
    parser.add_argument("--open", action="store_true", help="Open the HTML report when done")
    args = parser.parse_args()

    COVERAGE_DIR.mkdir(exist_ok=True)
    all_passed = True
    coverage_files: list[Path] = []

    for pkg in args.package or PACKAGES:
        try:
            cov_file = run_package(pkg, args.no_mocks, verbose=not args.quiet)
        except subprocess.CalledProcessError:
            all_passed = False
            cov_file = COVERAGE_DIR / f".coverage.{pkg}"
        if cov_file is not None:
            coverage_files.append(cov_file)

    print(f"\n{'=' * 60}")
    print("Combining coverage data...")
    print(f"{'=' * 60}")
    combine(coverage_files)
    print_package_totals()

    if args.open:
        webbrowser.open((COVERAGE_DIR / "html" / "index.html").as_uri())

    return 0 if all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
