WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DAY_SHORT_MAP = {name[:3]: name for name in WEEKDAY_NAMES}


def normalize_weekday(value: str) -> str:
    """Map "mon", "Mon" or "monday" to "Monday"; unknown names are only title-cased."""
    stripped = value.strip()
    return DAY_SHORT_MAP.get(stripped[:3].title(), stripped.title()) if stripped else stripped
