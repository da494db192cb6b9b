"""
Helper utility functions
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pytz


def local_today(timezone_name: str, now: Optional[datetime] = None) -> date:
    """Calendar day in the operating timezone"""
    tz = pytz.timezone(timezone_name)
    now = now or datetime.now(pytz.utc)
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(tz).date()


def iso_day(value: date) -> str:
    return value.isoformat()


def day_bounds(start: date, end: date, timezone_name: str) -> Tuple[datetime, datetime]:
    """[start 00:00, end 23:59:59.999999] in the operating timezone, as UTC datetimes"""
    tz = pytz.timezone(timezone_name)
    lower = tz.localize(datetime.combine(start, datetime.min.time()))
    upper = tz.localize(datetime.combine(end, datetime.max.time()))
    return lower.astimezone(pytz.utc), upper.astimezone(pytz.utc)


def days_ago(today: date, days: int) -> date:
    return today - timedelta(days=days)


def serialize_doc(doc: Optional[Dict], timezone_name: str = "Africa/Lagos") -> Optional[Dict]:
    """Convert a stored document to JSON-serializable format"""
    if doc is None:
        return None

    tz = pytz.timezone(timezone_name)
    result = {}
    for key, value in doc.items():
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = pytz.utc.localize(value)
            result[key] = value.astimezone(tz).isoformat()
        elif isinstance(value, list):
            result[key] = [serialize_doc(item, timezone_name) if isinstance(item, dict) else item for item in value]
        elif isinstance(value, dict):
            result[key] = serialize_doc(value, timezone_name)
        else:
            result[key] = value
    if "_id" in result:
        result["_id"] = str(result["_id"])
    return result


def serialize_docs(docs: List[Dict], timezone_name: str = "Africa/Lagos") -> List[Dict]:
    """Convert a list of stored documents to JSON-serializable format"""
    return [serialize_doc(doc, timezone_name) for doc in docs]
