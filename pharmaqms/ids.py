# pharmaqms/ids.py

import random
import string
import time
from datetime import date
from typing import Optional

_last_ms = 0
_counter = 0


def _millis() -> int:
    return time.time_ns() // 1_000_000


def new_id(prefix: str, with_suffix: bool = True) -> str:
    """
    Primary key for a record or ledger entry: prefix + millisecond timestamp,
    plus a per-millisecond counter and a short random suffix so that bulk
    imports creating many records in the same millisecond stay unique.
    Example: ``DEV-1735689600123-0-k3f9q``.
    """
    global _last_ms, _counter
    now = _millis()
    if now == _last_ms:
        _counter += 1
    else:
        _last_ms, _counter = now, 0
    if not with_suffix:
        return f"{prefix}-{now}" if _counter == 0 else f"{prefix}-{now}-{_counter}"
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"{prefix}-{now}-{_counter}-{suffix}"


def year_component(today: Optional[date] = None, digits: int = 2) -> str:
    today = today or date.today()
    return str(today.year)[-digits:]


def new_display_number(prefix: str, sequence_hint: int, offset: int = 1,
                       year_digits: int = 2, width: int = 0, sep: str = "-",
                       today: Optional[date] = None) -> str:
    """
    Human-facing code shown in tables, e.g. ``CAPA-25-101``.

    Built from the current count of records of that kind plus a year component,
    so two codes can collide after deletions. Never used as a primary key.
    """
    seq = sequence_hint + offset
    seq_str = f"{seq:0{width}d}" if width else str(seq)
    if year_digits:
        return f"{prefix}{sep}{year_component(today, year_digits)}-{seq_str}"
    return f"{prefix}{sep}{seq_str}"
