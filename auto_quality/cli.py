"""CLI entry points for auto-quality package."""

import sys


def main_auto_quality():
    """Entry point for auto-quality command."""
    from auto_quality.core.main import main
    sys.exit(main())


if __name__ == "__main__":
    main_auto_quality()
