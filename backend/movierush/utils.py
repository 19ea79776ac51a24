import time
from datetime import date, datetime


def now_ts() -> float:
    return time.time()


def today_key() -> str:
    """Local calendar day as YYYY-MM-DD; the daily challenge rolls over at local midnight."""
    return date.today().isoformat()


def format_date_for_display(day_key: str) -> str:
    day = datetime.strptime(day_key, "%Y-%m-%d").date()
    return f"{day:%B} {day.day}, {day.year}"


def sort_by_points(movies: list[dict]) -> list[dict]:
    return sorted(movies, key=lambda m: -m.get("points_awarded", 0))
