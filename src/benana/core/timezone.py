"""UTC timezone enforcement.

Sets the TZ environment variable to UTC and provides the naive-UTC clock used for
every timestamp written to the embedded database.
"""

import os
from datetime import datetime, timezone

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (SQLite stores no offsets)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
