"""
Run the humanvision unit tests.

Usage:
    python unit_test/run_tests.py            # all tests
    python unit_test/run_tests.py test_nms   # one module
"""
import sys
import unittest
from pathlib import Path


def main(argv: list[str]) -> int:
    """Discover and run unit tests under unit_test/tests."""
    script_dir = Path(__file__).parent
    repo_root = script_dir.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

    pattern = f"{argv[0]}.py" if argv else "test_*.py"
    tests_dir = script_dir / "tests"
    suite = unittest.TestLoader().discover(start_dir=str(tests_dir), pattern=pattern)
    result = unittest.TextTestRunner(verbosity=2).run(suite)
    return 0 if result.wasSuccessful() else 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
