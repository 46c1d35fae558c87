"""Reading streak arithmetic."""
from datetime import date, datetime, timezone
from typing import Iterable, Optional, Tuple


def utc_today() -> date:
    """Calendar day used for streaks; completion records are stamped in UTC."""
    return datetime.now(timezone.utc).date()


def next_streak(current_streak: int, last_read: Optional[date], today: date) -> int:
    """Streak after completing a verse on `today`.

    Args:
        current_streak: Streak before this completion
        last_read: Date of the previous completion (None if never read)
        today: Date of this completion

    Returns:
        1 on the first read or after a gap of more than one day,
        current_streak + 1 on the day after last_read,
        current_streak unchanged on the same day.
    """
    if last_read is None:
        return 1
    diff_days = (today - last_read).days
    if diff_days == 1:
        return current_streak + 1
    if diff_days > 1:
        return 1
    # Same day (or a clock that went backwards)
    return current_streak


def streaks_from_dates(read_dates: Iterable[date], today: date) -> Tuple[int, int]:
    """Compute (current_streak, longest_streak) from completion dates.

    The current streak counts back from today; a streak whose most recent day
    is yesterday is still alive. The longest streak is the longest run of
    consecutive days anywhere in the history, and never less than the current one.
    """
    unique_dates = sorted(set(read_dates), reverse=True)
    if not unique_dates:
        return 0, 0

    current = 0
    cursor = today
    for read_date in unique_dates:
        if (cursor - read_date).days <= 1:
            current += 1
            cursor = read_date
        else:
            break

    longest = 1
    run = 1
    for newer, older in zip(unique_dates, unique_dates[1:]):
        if (newer - older).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    return current, max(current, longest)
