"""
EMI Tracker - Demo Data Generator

Generates realistic fake data for demo accounts: a handful of EMIs with some
installments already paid, monthly payments, four months of ledger history
and a trail of house savings deposits.
"""

import datetime
import logging
import random
from decimal import Decimal

from faker import Faker

from . import schedule

logger = logging.getLogger(__name__)

fake = Faker()

DEMO_MONTHS = 4

DEMO_EMIS = [
    {"name": "Home Loan - SBI", "type": "home_loan", "payment_type": "emi", "amount": 32500, "installments": 240, "months_ago": 18, "rate": 8.4},
    {"name": "Car Loan", "type": "car_loan", "payment_type": "emi", "amount": 14200, "installments": 60, "months_ago": 9, "rate": 9.1},
    {"name": "iPhone 15", "type": "mobile_emi", "payment_type": "emi", "amount": 6650, "installments": 12, "months_ago": 10, "rate": None},
    {"name": "Gym Membership", "type": "other", "payment_type": "subscription", "amount": 1500, "installments": 0, "months_ago": 6, "rate": None},
]

DEMO_PAYMENTS = [
    {"name": "Flat Rent", "emi_type": "recurring", "category": "expense", "amount": 18000, "day": 5},
    {"name": "Chit Fund", "emi_type": "ending", "category": "savings", "amount": 5000, "day": 10, "months": 20},
    {"name": "Laptop EMI", "emi_type": "ending", "category": "expense", "amount": 4200, "day": 31, "months": 6},
    {"name": "SIP - Index Fund", "emi_type": "recurring", "category": "savings", "amount": 7500, "day": 15},
]

EXPENSE_TEMPLATES = [
    ("Food & Dining", (250, 2200), ["Dinner at {}", "Groceries from {}", "Lunch with {}"]),
    ("Transportation", (150, 1800), ["Fuel refill", "Cab to {}", "Metro card recharge"]),
    ("Utilities", (600, 3500), ["Electricity bill", "Broadband bill", "Mobile recharge"]),
    ("Shopping", (500, 6000), ["Order from {}", "Clothes at {}"]),
    ("Healthcare", (300, 4000), ["Pharmacy", "Consultation with Dr. {}"]),
]


def _money(low, high):
    return Decimal(random.randint(low * 100, high * 100)) / 100


def generate_demo_data(engine, user_id, today=None, seed=None):
    """
    Generate demo data for a user.

    Args:
        engine: FinanceEngine instance
        user_id: User ID to generate data for
        today (date, optional): Anchor date, defaults to today
        seed (int, optional): Seed Faker and random for repeatable output

    Returns:
        dict: Number of records created per kind
    """
    if seed is not None:
        random.seed(seed)
        Faker.seed(seed)

    today = schedule.parse_date(today) or datetime.date.today()
    start = schedule.add_months(schedule.month_start(today), -DEMO_MONTHS, day=1)
    created = {'emis': 0, 'emiPayments': 0, 'payments': 0, 'paidOccurrences': 0,
               'transactions': 0, 'houseSavings': 0}

    logger.info("Generating demo data for user %s from %s to %s", user_id, start, today)

    # ===== EMIS =====

    for item in DEMO_EMIS:
        emi_start = schedule.add_months(today, -item['months_ago'])
        success, message, emi = engine.add_emi(
            user_id, item['name'], item['type'], item['payment_type'], item['amount'],
            item['installments'], emi_start, interest_rate=item['rate'], today=today,
        )
        if not success:
            logger.warning("Demo EMI '%s' skipped: %s", item['name'], message)
            continue
        created['emis'] += 1

        # Pay everything that fell due before this month
        for _ in range(item['months_ago']):
            ok, message, emi = engine.record_emi_payment(user_id, emi['id'], payment_date=emi['nextDueDate'],
                                                         today=today)
            if not ok or emi['status'] == 'completed':
                break
            created['emiPayments'] += 1

    # ===== PAYMENTS =====

    for item in DEMO_PAYMENTS:
        payment_start = start
        end_date = None
        if item['emi_type'] == 'ending':
            end_date = schedule.add_months(payment_start, item['months'] - 1, day=item['day'])
        success, message, _ = engine.add_payment(
            user_id, item['name'], item['emi_type'], item['category'], item['amount'], item['day'],
            payment_start, end_date, notes=fake.sentence(nb_words=5), today=today,
        )
        if success:
            created['payments'] += 1
        else:
            logger.warning("Demo payment '%s' skipped: %s", item['name'], message)

    # Mark past occurrences paid, leaving the current month open
    for tx in engine.get_payment_transactions(user_id, status='pending', today=today):
        if tx['paymentDate'] < schedule.month_start(today):
            engine.set_payment_transaction_status(user_id, tx['id'], 'paid', today=today)
            created['paidOccurrences'] += 1

    # ===== LEDGER =====

    categories = {c['name']: c['id'] for c in engine.get_categories(user_id)}
    for month_offset in range(DEMO_MONTHS + 1):
        month = schedule.add_months(start, month_offset, day=1)
        salary_day = schedule.clamped_date(month.year, month.month, 1)
        if salary_day <= today:
            engine.add_transaction(
                user_id, 'income', 85000, f"Salary - {fake.company()}", salary_day,
                'bank_transfer', categories.get('Salary'), today=today,
            )
            created['transactions'] += 1

        for _ in range(random.randint(8, 14)):
            category, (low, high), templates = random.choice(EXPENSE_TEMPLATES)
            day = schedule.clamped_date(month.year, month.month, random.randint(1, 31))
            if day > today:
                continue
            description = random.choice(templates).format(fake.last_name())
            engine.add_transaction(
                user_id, 'expense', _money(low, high), description, day,
                random.choice(['cash', 'debit_card', 'credit_card', 'digital_wallet']),
                categories.get(category), today=today,
            )
            created['transactions'] += 1

        if random.random() < 0.4:
            day = schedule.clamped_date(month.year, month.month, random.randint(10, 25))
            if day <= today:
                engine.add_transaction(
                    user_id, 'income', _money(2000, 15000), f"Freelance project for {fake.company()}",
                    day, 'bank_transfer', categories.get('Freelance'), today=today,
                )
                created['transactions'] += 1

    # ===== HOUSE SAVINGS =====

    user = engine.get_user(user_id)
    for month_offset in range(DEMO_MONTHS + 1):
        month = schedule.add_months(start, month_offset, day=1)
        deposit_day = schedule.clamped_date(month.year, month.month, 7)
        if deposit_day > today:
            continue
        engine.add_house_saving(user_id, user['role'], deposit_day, _money(8000, 20000),
                                notes=fake.sentence(nb_words=4))
        created['houseSavings'] += 1
    engine.set_house_savings_goal(user_id, user['role'], 2500000)

    logger.info("Demo data created: %s", created)
    return created
