"""
Main entry point for running the GlowSync server as a module.

This allows the package to be executed with:
    python -m glowsync

The recommended way to run the server is the installed CLI command:
    glowsync-server
"""

from .cli import cli_main

if __name__ == "__main__":
    cli_main()
