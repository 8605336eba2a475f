"""
Command-line interface wrapper for the GlowSync server.

Entry point for the ``glowsync-server`` console script; it delegates to
:func:`glowsync.server.main`.
"""

import sys

from .server import main


def cli_main() -> None:
    """Run the server, turning stray interrupts and errors into exit codes."""
    try:
        main()
    except KeyboardInterrupt:
        print("\nServer interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
