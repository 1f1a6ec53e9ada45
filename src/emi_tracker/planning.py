"""
EMI Tracker - Forecast & Financial Freedom Planning

Aggregations over a snapshot of a user's payments. Every function takes the
payment dictionaries exactly as the API returns them (camelCase keys,
Decimal amounts, date objects) plus an explicit `today`, and returns plain
data ready for JSON.

Forecast:
- Month buckets starting at the current month
- Per-bucket totals following the recurring/ending rules
- Summary statistics, category breakdown and insights

Financial freedom:
- Debt-to-income ratio and remaining obligations
- Health score (0-100) and its label
- Prioritized payments, time to freedom, recommendations

License: MIT
"""

import datetime
import math
from decimal import Decimal

from .schedule import add_months, month_end, month_start, months_between, parse_date


MIN_FORECAST_MONTHS = 1
MAX_FORECAST_MONTHS = 12
DEFAULT_FORECAST_MONTHS = 6

RECURRING_HORIZON_MONTHS = 12
ENDING_SOON_MONTHS = 3

ZERO = Decimal('0')


def _amount(payment):
    value = payment.get('amount')
    if value in (None, ''):
        return ZERO
    return Decimal(str(value))


def _is_active(payment):
    return payment.get('status') == 'active'


# =============================================================================
# FORECAST
# =============================================================================

def clamp_months(months):
    try:
        months = int(months)
    except (TypeError, ValueError):
        return DEFAULT_FORECAST_MONTHS
    return min(MAX_FORECAST_MONTHS, max(MIN_FORECAST_MONTHS, months))


def forecast_series(payments, months=DEFAULT_FORECAST_MONTHS, today=None):
    """
    Project monthly payment totals from the current month forward.

    Args:
        payments (list): Payment dicts (amount, status, emiType, startDate, endDate)
        months (int): Number of buckets, clamped to 1..12
        today (date, optional): Reference date, defaults to today

    Returns:
        list: One dict per month with key (YYYY-MM), label (Mon YYYY),
              start, end and total
    """
    today = parse_date(today) or datetime.date.today()
    months = clamp_months(months)

    buckets = []
    for i in range(months):
        month_date = add_months(month_start(today), i, day=1)
        buckets.append({
            'key': month_date.strftime('%Y-%m'),
            'label': month_date.strftime('%b %Y'),
            'start': month_date,
            'end': month_end(month_date),
            'total': ZERO,
        })

    for payment in payments:
        amount = _amount(payment)
        if not amount or payment.get('status') == 'completed':
            continue

        emi_type = payment.get('emiType')
        start_date = parse_date(payment.get('startDate'))
        end_date = parse_date(payment.get('endDate'))

        for bucket in buckets:
            if start_date and bucket['end'] < start_date:
                continue
            if emi_type == 'ending':
                # Only months that begin on or before the final installment
                if end_date and bucket['start'] <= end_date:
                    bucket['total'] += amount
            else:
                # Recurring, or an unknown type counted conservatively
                bucket['total'] += amount

    return buckets


def forecast_stats(series):
    if not series:
        return {'totalEMI': ZERO, 'avgEMI': ZERO, 'highestMonth': None, 'lowestMonth': None}

    total = sum((bucket['total'] for bucket in series), ZERO)
    highest = series[0]
    lowest = series[0]
    for bucket in series[1:]:
        if bucket['total'] > highest['total']:
            highest = bucket
        if bucket['total'] < lowest['total']:
            lowest = bucket

    return {
        'totalEMI': total,
        'avgEMI': total / len(series),
        'highestMonth': {'key': highest['key'], 'label': highest['label'], 'total': highest['total']},
        'lowestMonth': {'key': lowest['key'], 'label': lowest['label'], 'total': lowest['total']},
    }


def category_breakdown(payments):
    """Split active payments into savings and expense totals."""
    savings = [p for p in payments if _is_active(p) and p.get('category') == 'savings']
    expenses = [p for p in payments if _is_active(p) and p.get('category') != 'savings']
    return {
        'savings': sum((_amount(p) for p in savings), ZERO),
        'expenses': sum((_amount(p) for p in expenses), ZERO),
        'savingsCount': len(savings),
        'expensesCount': len(expenses),
    }


def forecast_insights(payments, today=None):
    today = parse_date(today) or datetime.date.today()

    ending_soon = []
    for payment in payments:
        if payment.get('emiType') != 'ending':
            continue
        end_date = parse_date(payment.get('endDate'))
        if end_date is None:
            continue
        # 30-day months, rounded up
        months_until_end = math.ceil((end_date - today).days / 30)
        if 0 < months_until_end <= ENDING_SOON_MONTHS:
            ending_soon.append({
                'id': payment.get('id'),
                'name': payment.get('name'),
                'amount': _amount(payment),
                'endDate': end_date,
                'monthsUntilEnd': months_until_end,
            })

    recurring_count = len([
        p for p in payments if p.get('emiType') == 'recurring' and _is_active(p)
    ])
    return {'endingSoon': ending_soon, 'recurringCount': recurring_count}


# =============================================================================
# FINANCIAL FREEDOM
# =============================================================================

def remaining_obligation(payment, today):
    """Money still owed on one payment: a year for recurring, the rest of the term for ending."""
    amount = _amount(payment)
    if payment.get('emiType') == 'recurring':
        return amount * RECURRING_HORIZON_MONTHS
    end_date = parse_date(payment.get('endDate'))
    if end_date is None:
        return ZERO
    remaining_months = max(0, months_between(end_date, today) + 1)
    return amount * remaining_months


def health_score(debt_to_income_ratio, active_payments):
    score = 100
    if debt_to_income_ratio > 50:
        score -= 40
    elif debt_to_income_ratio > 40:
        score -= 30
    elif debt_to_income_ratio > 30:
        score -= 20
    elif debt_to_income_ratio > 20:
        score -= 10

    if active_payments > 10:
        score -= 15
    elif active_payments > 7:
        score -= 10
    elif active_payments > 5:
        score -= 5

    return max(0, min(100, score))


def health_label(score):
    if score >= 70:
        return 'Excellent'
    if score >= 50:
        return 'Good'
    if score >= 30:
        return 'Fair'
    return 'Critical'


def financial_metrics(payments, monthly_income, today=None):
    """
    Core financial-freedom numbers for the active payments passed in.

    Returns:
        dict: totalMonthlyEMI, monthlyIncome, debtToIncomeRatio (percent),
              totalRemainingDebt, healthScore, healthLabel, activePayments
    """
    today = parse_date(today) or datetime.date.today()
    monthly_income = Decimal(str(monthly_income or 0))

    total_monthly = sum((_amount(p) for p in payments), ZERO)
    ratio = (total_monthly / monthly_income * 100) if monthly_income > 0 else ZERO
    remaining = sum((remaining_obligation(p, today) for p in payments), ZERO)
    score = health_score(ratio, len(payments))

    return {
        'totalMonthlyEMI': total_monthly,
        'monthlyIncome': monthly_income,
        'debtToIncomeRatio': ratio,
        'totalRemainingDebt': remaining,
        'healthScore': score,
        'healthLabel': health_label(score),
        'activePayments': len(payments),
    }


def prioritize(payments):
    """Highest monthly amount first: clearing it frees the most cash."""
    return sorted(payments, key=_amount, reverse=True)


def time_to_freedom(payments, today=None):
    """
    Months until the last ending payment finishes.

    Returns:
        int or None: 0 with no payments, None when everything is recurring
    """
    if not payments:
        return 0
    today = parse_date(today) or datetime.date.today()

    end_dates = [
        parse_date(p.get('endDate'))
        for p in payments
        if p.get('emiType') == 'ending' and p.get('endDate')
    ]
    if not end_dates:
        return None
    return max(0, months_between(max(end_dates), today) + 1)


def _money(value):
    return f"{Decimal(value):,.2f}"


def recommendations(metrics, prioritized):
    recs = []
    ratio = metrics['debtToIncomeRatio']

    if ratio > 40:
        recs.append({
            'type': 'critical',
            'title': 'High Debt-to-Income Ratio',
            'message': f"Your EMI burden is {ratio:.1f}% of your income. Aim to reduce it below 30%.",
            'action': 'Consider consolidating debts or increasing income.',
        })

    if metrics['activePayments'] > 7:
        recs.append({
            'type': 'warning',
            'title': 'Too Many Active Payments',
            'message': f"You have {metrics['activePayments']} active payments. Focus on paying off smaller ones first.",
            'action': 'Use debt snowball method - pay off smallest debts first.',
        })

    income = metrics['monthlyIncome']
    total = metrics['totalMonthlyEMI']
    if total > 0 and income > 0:
        savings_rate = (income - total) / income * 100
        if savings_rate < 20:
            recs.append({
                'type': 'info',
                'title': 'Low Savings Rate',
                'message': f"After EMIs, you're saving only {savings_rate:.1f}% of income.",
                'action': 'Try to maintain at least 20% savings rate for financial security.',
            })

    if prioritized:
        top = prioritized[0]
        amount = _money(_amount(top))
        recs.append({
            'type': 'success',
            'title': 'Priority Payment',
            'message': f"Focus on \"{top.get('name')}\" ({amount}/month).",
            'action': f"Paying this off will free up {amount} monthly.",
        })

    return recs
