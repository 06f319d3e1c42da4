# =============================================================================
# src/cli/__main__.py — Package Entry Point
# =============================================================================
#
# Enables `python -m src.cli <subcommand>`; everything lives in ingest.py.
# =============================================================================

"""Allow ``python -m src.cli`` execution."""

import sys

from src.cli.ingest import main

sys.exit(main())
