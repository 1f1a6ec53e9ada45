"""
EMI Tracker - Schedule Arithmetic

Pure date helpers for monthly installment schedules. Nothing in this module
touches the database; callers pass plain dates and get plain dates or counts
back, so the same rules apply to every endpoint that needs them.

Rules:
- An installment is due on `emi_day` of each month, clamped to the last day
  of shorter months (day 31 falls on Feb 28/29, Apr 30, ...).
- Windows are inclusive on both ends.
- Recurring payments have no end date and therefore no pending count.

License: MIT
"""

import calendar
import datetime


DATE_FORMAT = '%Y-%m-%d'

DUE_SOON_DAYS = 7


def parse_date(value):
    """Accept a date, a datetime, or an ISO string (date part only) and return a date."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    # '2025-01-31T12:00:00' and '2025-01-31 00:00:00' both carry the date first
    return datetime.datetime.strptime(text[:10], DATE_FORMAT).date()


def days_in_month(year, month):
    return calendar.monthrange(year, month)[1]


def clamped_date(year, month, day):
    """Build a date, pulling `day` back to the month's last day when it overflows."""
    return datetime.date(year, month, min(day, days_in_month(year, month)))


def add_months(d, months, day=None):
    """
    Move `d` by a number of calendar months.

    Args:
        d (date): Anchor date
        months (int): Months to add (may be negative)
        day (int, optional): Day of month to land on; defaults to d.day.
                             Always clamped to the target month's length.
    """
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    return clamped_date(year, month + 1, day or d.day)


def month_start(d):
    return d.replace(day=1)


def month_end(d):
    return d.replace(day=days_in_month(d.year, d.month))


def occurrences(start, end, emi_day):
    """
    List every monthly due date between start and end, inclusive.

    Each month from start's month through end's month contributes the clamped
    emi_day, kept only when it falls inside the window.
    """
    start = parse_date(start)
    end = parse_date(end)
    if start is None or end is None or end < start:
        return []

    emi_day = emi_day or start.day
    dates = []
    cursor = month_start(start)
    while cursor <= end:
        due = clamped_date(cursor.year, cursor.month, emi_day)
        if start <= due <= end:
            dates.append(due)
        cursor = add_months(cursor, 1, day=1)
    return dates


def count_occurrences(start, end, emi_day):
    return len(occurrences(start, end, emi_day))


def pending_emis(emi_type, start, end, emi_day, paid_count=0, today=None):
    """
    Number of scheduled installments still unpaid.

    Returns:
        int or None: None for recurring payments ("Ongoing") and for payments
                     missing a start or end date ("-"); otherwise the count of
                     scheduled occurrences minus paid_count, never below zero.
    """
    if emi_type == 'recurring':
        return None

    start = parse_date(start)
    end = parse_date(end)
    if start is None or end is None:
        return None
    if end < start:
        return 0

    today = parse_date(today) or datetime.date.today()
    if today > end:
        return 0

    paid_count = paid_count if isinstance(paid_count, int) else 0
    return max(0, count_occurrences(start, end, emi_day) - paid_count)


def next_payment_date(start, emi_day, today=None, end=None):
    """
    Next due date for a monthly payment, as seen from `today`.

    Before the schedule starts this is the first occurrence on or after the
    start date. Afterwards it is the first occurrence strictly after today
    (a payment due today counts as handled). None once past `end`.
    """
    start = parse_date(start)
    if start is None:
        return None
    end = parse_date(end)
    today = parse_date(today) or datetime.date.today()
    emi_day = emi_day or start.day

    first = clamped_date(start.year, start.month, emi_day)
    if first < start:
        first = add_months(first, 1, day=emi_day)

    if today < first:
        candidate = first
    else:
        candidate = clamped_date(today.year, today.month, emi_day)
        if candidate <= today:
            candidate = add_months(candidate, 1, day=emi_day)

    if end is not None and candidate > end:
        return None
    return candidate


def emi_next_due_date(start, paid_installments, total_installments, payment_type='emi'):
    """
    Due date of the next unpaid EMI installment.

    Installment n (zero based) is due n months after the start date, on the
    start date's day. Subscriptions never run out; other payment types stop
    once every installment is paid.
    """
    start = parse_date(start)
    if start is None:
        return None
    paid_installments = paid_installments or 0
    if payment_type != 'subscription' and paid_installments >= (total_installments or 0):
        return None
    return add_months(start, paid_installments, day=start.day)


def months_between(later, earlier):
    """Whole calendar months from `earlier` to `later`, truncated toward zero."""
    later = parse_date(later)
    earlier = parse_date(earlier)
    sign = 1
    if later < earlier:
        later, earlier = earlier, later
        sign = -1
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    if add_months(earlier, months) > later:
        months -= 1
    return sign * months


def days_until(due, today=None):
    due = parse_date(due)
    if due is None:
        return None
    today = parse_date(today) or datetime.date.today()
    return (due - today).days


def due_status(days):
    """Classify a days-until-due figure as overdue, due-soon or upcoming."""
    if days is None:
        return None
    if days < 0:
        return 'overdue'
    if days <= DUE_SOON_DAYS:
        return 'due-soon'
    return 'upcoming'
