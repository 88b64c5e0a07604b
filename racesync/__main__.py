"""
Package entry point.

Allows running the application via:

    python -m racesync

This simply forwards execution to racesync.cli.main().
"""

from racesync.cli import main

if __name__ == "__main__":
    main()
