#!/usr/bin/env python3
"""
Convenience shim for leads-ranker.

The recommended way to run leads-ranker is:

    leads-ranker --help       # CLI commands
    leads-ranker rank         # Rank all leads
    leads-ranker serve        # Start the API server

Or directly via Python:

    python -m leads_ranker --help
"""

from leads_ranker.cli import main

if __name__ == "__main__":
    main()
