# File: tests/run_tests.py
#!/usr/bin/env python3
"""
Test runner for the ParkSmart booking core tests.

Usage:
    python tests/run_tests.py                      # all tests
    python tests/run_tests.py unit                 # one suite
    python tests/run_tests.py unit.test_strategies # one module
"""

import unittest
import sys
from pathlib import Path

# Add the src directory to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def run_all_tests(start_dir=None):
    """Run all test suites below start_dir (defaults to tests/)"""
    test_loader = unittest.TestLoader()
    top_level_dir = str(Path(__file__).parent)

    test_suite = test_loader.discover(
        start_dir or top_level_dir,
        pattern='test_*.py',
        top_level_dir=top_level_dir
    )

    test_runner = unittest.TextTestRunner(verbosity=2)
    return test_runner.run(test_suite)


def run_specific_test(test_name):
    """Run a suite directory (unit, integration) or a dotted test module"""
    suite_dir = Path(__file__).parent / test_name
    if suite_dir.is_dir():
        return run_all_tests(str(suite_dir))

    sys.path.insert(0, str(Path(__file__).parent))
    test_suite = unittest.TestLoader().loadTestsFromName(test_name)
    test_runner = unittest.TextTestRunner(verbosity=2)
    return test_runner.run(test_suite)


if __name__ == "__main__":
    if len(sys.argv) > 1:
        result = run_specific_test(sys.argv[1])
    else:
        result = run_all_tests()

    sys.exit(0 if result.wasSuccessful() else 1)
