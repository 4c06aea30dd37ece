#!/usr/bin/env python3
"""
Test runner for the retargetkit package.

    python tests/run_tests.py            # everything
    python tests/run_tests.py engine     # tests/test_engine.py only
"""

import unittest
import sys
from pathlib import Path

TESTS_DIR = Path(__file__).parent

# Package root for retargetkit, tests dir for skeleton_fixtures
sys.path.insert(0, str(TESTS_DIR.parent))
sys.path.insert(0, str(TESTS_DIR))

MODULES = sorted(p.stem[len('test_'):] for p in TESTS_DIR.glob('test_*.py'))


def run_all_tests():
    """Run all unit tests."""
    loader = unittest.TestLoader()
    suite = loader.discover(str(TESTS_DIR), pattern='test_*.py', top_level_dir=str(TESTS_DIR))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return result.wasSuccessful()


def run_specific_module(module_name):
    """Run tests for a specific module."""
    if module_name not in MODULES:
        print(f"Error: Could not find test module 'test_{module_name}'")
        print(f"Available modules: {', '.join(MODULES)}")
        return False

    loader = unittest.TestLoader()
    suite = loader.loadTestsFromName(f'test_{module_name}')

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return result.wasSuccessful()


if __name__ == '__main__':
    if len(sys.argv) > 1:
        success = run_specific_module(sys.argv[1])
    else:
        print("Running all tests...")
        print("=" * 60)
        success = run_all_tests()

    print("\n" + "=" * 60)
    print("All tests passed!" if success else "Some tests failed!")
    print("=" * 60)

    sys.exit(0 if success else 1)
