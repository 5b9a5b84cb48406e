"""Main CLI entry point.

This module serves as the entry point for the ``ai-failover`` command and
``python -m ai_failover.cli.main``.
"""

from ai_failover.cli import app

if __name__ == "__main__":
    app()
