import random
import re
from datetime import datetime, timezone
from typing import Optional

TRACKING_NUMBER_RE = re.compile(r"^CR\d{2}\d{2}-\d{4}$")


def generate_tracking_number(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """Return a tracking number like ``CR2610-0042`` (year, month, random suffix).

    Uniqueness is left to the database constraint on ``Report.tracking_number``.
    """
    now = now or datetime.now(timezone.utc)
    rng = rng or random
    return f"CR{now:%y}{now:%m}-{rng.randint(0, 9999):04d}"
