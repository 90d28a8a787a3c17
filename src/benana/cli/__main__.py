"""CLI entry point for benana.cli module.

Enables execution via: python -m benana.cli
"""

from benana.cli.recover_jobs import main

if __name__ == "__main__":
    raise SystemExit(main())
