"""Entry point for running the attendance CLI as a module.

Usage:
    python -m ferretto_attendance enroll --user 2
    python -m ferretto_attendance verify --user 2
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
