#!/usr/bin/env python3
"""
Test runner for the library member portal.

Usage:
    python run_tests.py                           # Run all tests
    python run_tests.py -k test_register          # Run specific test pattern
    python run_tests.py --cov                     # Run with coverage
    python run_tests.py --exports                 # Run export pipeline tests only
"""

import sys
import subprocess
from pathlib import Path


def run_tests(args=None, paths=None):
    """Run tests with pytest."""
    if args is None:
        args = []

    cmd = [sys.executable, "-m", "pytest", *(paths or ["tests"]), "-v", "--tb=short"]
    cmd.extend(args)

    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=Path(__file__).parent)
    return result.returncode


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Run tests for the library member portal")
    parser.add_argument("-k", "--keyword", help="Run tests matching keyword")
    parser.add_argument("--cov", action="store_true", help="Run with coverage")
    parser.add_argument("--exports", action="store_true", help="Run export pipeline tests only")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--pdb", action="store_true", help="Drop into debugger on failure")

    args = parser.parse_args()

    pytest_args = []
    paths = None

    if args.keyword:
        pytest_args.extend(["-k", args.keyword])

    if args.cov:
        pytest_args.extend([
            "--cov=library_portal",
            "--cov-report=html",
            "--cov-report=term-missing"
        ])

    if args.exports:
        paths = ["tests/test_spreadsheet_export.py", "tests/test_id_card_export.py"]

    if args.verbose:
        pytest_args.append("-vv")

    if args.pdb:
        pytest_args.append("--pdb")

    return run_tests(pytest_args, paths)


if __name__ == "__main__":
    sys.exit(main())
