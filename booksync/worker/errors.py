from __future__ import annotations


class PermanentJobError(Exception):
    """Raised by a handler when retrying the job can never succeed."""
