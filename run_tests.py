"""Test runner script for the Device Relay.

This script provides convenient commands to run different test suites.
"""

import subprocess
import sys
from pathlib import Path
from typing import List

ROOT = Path(__file__).parent
PACKAGE = "device_relay"


def _run(args: List[str]) -> bool:
    result = subprocess.run([sys.executable, "-m", *args], cwd=ROOT)
    return result.returncode == 0


def run_unit_tests() -> bool:
    """Run unit tests."""
    print("Running unit tests...")
    return _run([
        "pytest", "tests/unit/", "-v", "--tb=short",
        f"--cov={PACKAGE}", "--cov-report=term-missing",
    ])


def run_integration_tests() -> bool:
    """Run integration tests against the in-memory broker fakes."""
    print("Running integration tests...")
    return _run(["pytest", "tests/integration/", "-v", "--tb=short"])


def run_all_tests() -> bool:
    """Run all tests."""
    print("Running all tests...")
    return _run([
        "pytest", "tests/", "-v", "--tb=short",
        f"--cov={PACKAGE}", "--cov-report=term-missing", "--cov-report=html",
    ])


def run_type_check() -> bool:
    """Run mypy type checking."""
    print("Running type checking...")
    return _run(["mypy", PACKAGE])


def run_linting() -> bool:
    """Run flake8 and black in check mode."""
    print("Running linting...")
    flake8_ok = _run(["flake8", PACKAGE, "tests/"])
    black_ok = _run(["black", "--check", "--diff", PACKAGE, "tests/"])
    return flake8_ok and black_ok


def run_security_check() -> bool:
    """Run bandit over the package."""
    print("Running security check...")
    return _run(["bandit", "-r", PACKAGE, "-f", "json"])


CHECKS = {
    "type": ("Type Checking", run_type_check),
    "lint": ("Code Linting", run_linting),
    "unit": ("Unit Tests", run_unit_tests),
    "integration": ("Integration Tests", run_integration_tests),
    "security": ("Security Check", run_security_check),
}


def run_all_checks() -> int:
    """Run all quality checks."""
    print("=" * 60)
    print("Running complete test and quality check suite")
    print("=" * 60)

    results = {}
    for name, check_func in CHECKS.values():
        print(f"\n--- {name} ---")
        results[name] = check_func()

    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)
    for name, passed in results.items():
        print(f"{name}: {'PASSED' if passed else 'FAILED'}")

    if all(results.values()):
        print("\nAll checks passed!")
        return 0
    print("\nSome checks failed. Please fix the issues above.")
    return 1


if __name__ == "__main__":
    if len(sys.argv) == 1 or sys.argv[1] == "all":
        sys.exit(run_all_checks())

    command = sys.argv[1]
    if command == "tests":
        sys.exit(0 if run_all_tests() else 1)
    if command in CHECKS:
        sys.exit(0 if CHECKS[command][1]() else 1)
    print(f"Unknown command: {command}")
    sys.exit(1)
