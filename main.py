#!/usr/bin/env python3
"""Main entry point for Ferretto Edu Pro biometric attendance.

Simplified entry point that delegates to the CLI module.

Usage:
    python main.py users                  # List users and face status
    python main.py enroll --user 2        # Register a face
    python main.py test --user 2          # Single-shot face test
    python main.py verify --user 2        # Mark attendance

Or use the CLI directly:
    python -m ferretto_attendance verify --user 2
"""

import sys


def main():
    """Main entry point - delegates to CLI."""
    # If no arguments, show help
    if len(sys.argv) == 1:
        print(__doc__)
        print("Run 'python main.py --help' for more options")
        sys.exit(0)

    from ferretto_attendance.cli import main as cli_main
    sys.exit(cli_main())


if __name__ == "__main__":
    main()
