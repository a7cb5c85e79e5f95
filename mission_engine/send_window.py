"""
Send-Time Scheduler - picks the next local-morning send slot for a lead.

The UTC offset is guessed from the free-text location with an ordered table of
country/region/city tokens. Offsets are standard time and ignore daylight
saving; this is a coarse heuristic, not a timezone database lookup.
"""

import random
import re
import unicodedata
from datetime import datetime, time, timedelta
from typing import Optional, Tuple

from mission_engine import config
from mission_engine.db.connection import to_iso, utcnow

# First match wins: cities and states before the countries that contain them,
# except Caribbean countries whose cities share names with Southern Cone ones.
LOCATION_OFFSETS = [
    ("republica dominicana", -4), ("dominican republic", -4), ("puerto rico", -4),
    # Latin America, cities
    ("bogota", -5), ("medellin", -5), ("barranquilla", -5), ("lima", -5),
    ("quito", -5), ("guayaquil", -5),
    ("ciudad de mexico", -6), ("cdmx", -6), ("guadalajara", -6), ("monterrey", -6),
    ("caracas", -4), ("santo domingo", -4),
    ("santiago", -3), ("buenos aires", -3), ("cordoba", -3), ("rosario", -3),
    ("montevideo", -3), ("sao paulo", -3), ("rio de janeiro", -3), ("asuncion", -3),
    # Latin America, countries
    ("colombia", -5), ("peru", -5), ("ecuador", -5), ("panama", -5),
    ("mexico", -6), ("guatemala", -6), ("costa rica", -6), ("el salvador", -6),
    ("honduras", -6), ("nicaragua", -6),
    ("venezuela", -4), ("bolivia", -4),
    ("chile", -3), ("argentina", -3), ("uruguay", -3), ("paraguay", -3),
    ("brasil", -3), ("brazil", -3),
    # Europe
    ("madrid", 1), ("barcelona", 1), ("paris", 1), ("berlin", 1),
    ("amsterdam", 1), ("rome", 1), ("milan", 1),
    ("lisboa", 0), ("lisbon", 0), ("london", 0), ("dublin", 0),
    ("espana", 1), ("spain", 1), ("france", 1), ("germany", 1), ("alemania", 1),
    ("italy", 1), ("italia", 1), ("netherlands", 1),
    ("portugal", 0), ("united kingdom", 0), ("uk", 0), ("england", 0), ("ireland", 0),
    # North America, cities and states
    ("new york", -5), ("boston", -5), ("miami", -5), ("atlanta", -5), ("toronto", -5),
    ("florida", -5), ("massachusetts", -5), ("georgia", -5),
    ("chicago", -6), ("houston", -6), ("dallas", -6), ("austin", -6), ("texas", -6),
    ("illinois", -6),
    ("denver", -7), ("phoenix", -7), ("colorado", -7), ("arizona", -7), ("utah", -7),
    ("san francisco", -8), ("los angeles", -8), ("san diego", -8), ("seattle", -8),
    ("vancouver", -8), ("california", -8), ("oregon", -8),
    ("united states", -5), ("usa", -5), ("canada", -5),
]

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_location(text: Optional[str]) -> str:
    """Lowercase, strip accents and collapse punctuation into single spaces."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub(" ", ascii_only).strip()


def resolve_utc_offset(location_text: Optional[str]) -> Tuple[int, Optional[str]]:
    """Return (utc_offset_hours, matched_token). matched_token is None on default."""
    padded = f" {normalize_location(location_text)} "
    for token, offset in LOCATION_OFFSETS:
        if f" {token} " in padded:
            return offset, token
    return config.DEFAULT_UTC_OFFSET, None


def compute_scheduled_send(location_text: Optional[str], now: datetime = None,
                           rng: random.Random = None) -> str:
    """Next SEND_TARGET_HOUR local morning for the location, in UTC, plus jitter.

    If the local hour has already reached the target, the slot is tomorrow.
    """
    now = now or utcnow()
    rng = rng or random
    offset, _ = resolve_utc_offset(location_text)

    local_now = now + timedelta(hours=offset)
    target_date = local_now.date()
    if local_now.hour >= config.SEND_TARGET_HOUR:
        target_date += timedelta(days=1)

    target_local = datetime.combine(target_date, time(hour=config.SEND_TARGET_HOUR))
    target_utc = target_local - timedelta(hours=offset)
    jitter = timedelta(minutes=rng.uniform(0, config.SEND_JITTER_MINUTES))
    return to_iso(target_utc + jitter)
