"""Entry point for File Copier.

Usage:
    python -m file_copier              Run in the foreground (Ctrl-C to stop)
    python -m file_copier install      Install/manage the Windows service
                                       (install, start, stop, remove, restart)
    python -m file_copier --config C   Use config file C instead of the default
"""

import sys


def main() -> None:
    """Run the service CLI and exit with its status."""
    from file_copier.service import main as service_main

    sys.exit(service_main())


if __name__ == "__main__":
    main()
