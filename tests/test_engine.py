from datetime import date
from decimal import Decimal

import pytest

TODAY = date(2024, 3, 10)


# --- users & auth ---

def test_first_user_is_super_admin_then_users(owner, member):
    assert owner['role'] == 'super_admin'
    assert member['role'] == 'user'


def test_register_rejects_duplicate_email_case_insensitive(engine, owner):
    success, message, user = engine.register_user("Other", "ASHA@example.com", "secret123")
    assert not success
    assert message == "Email already exists."
    assert user is None


@pytest.mark.parametrize("name,email,password", [
    ("", "x@example.com", "secret123"),
    ("X", "not-an-email", "secret123"),
    ("X", "x@example.com", "short"),
])
def test_register_validation(engine, name, email, password):
    success, _, _ = engine.register_user(name, email, password)
    assert not success


def test_register_seeds_default_categories(engine, owner):
    names = {c['name'] for c in engine.get_categories(owner['id'])}
    assert {'Salary', 'EMI', 'Food & Dining'} <= names
    assert len(engine.get_categories(owner['id'], 'income')) == 3


def test_login(engine, owner):
    user, _ = engine.login_user("Asha@Example.com", "secret123")
    assert user['id'] == owner['id']
    user, message = engine.login_user("asha@example.com", "wrong-pass")
    assert user is None
    assert message == "Invalid email or password."


def test_change_password(engine, owner):
    assert engine.change_password(owner['id'], "wrong", "newsecret")[0] is False
    assert engine.change_password(owner['id'], "secret123", "newsecret")[0] is True
    assert engine.login_user("asha@example.com", "newsecret")[0] is not None


def test_update_profile_keeps_income_when_omitted(engine, owner):
    success, _, user = engine.update_profile(owner['id'], "Asha R", "asha@example.com", currency="usd")
    assert success
    assert user['currency'] == 'USD'
    assert user['monthlyIncome'] == Decimal('100000.00')


# --- user administration ---

def test_admin_cannot_manage_super_admins(engine, owner, member):
    success, message, _ = engine.create_user('admin', "Boss", "boss@example.com", "secret123", role='super_admin')
    assert not success
    assert 'permission' in message

    success, message = engine.delete_user(member['id'], 'admin', owner['id'])
    assert not success
    assert 'permission' in message


def test_users_cannot_delete_themselves(engine, owner):
    success, message = engine.delete_user(owner['id'], 'super_admin', owner['id'])
    assert not success
    assert message == "You cannot delete your own account."


def test_super_admin_promotes_user(engine, owner, member):
    success, _, user = engine.update_user('super_admin', member['id'], member['name'], member['email'], 'admin')
    assert success
    assert user['role'] == 'admin'


def test_last_super_admin_cannot_be_demoted(engine, owner, member):
    success, message, _ = engine.update_user('super_admin', owner['id'], owner['name'], owner['email'], 'admin')
    assert not success
    assert message == "At least one super admin account is required."

    engine.update_user('super_admin', member['id'], member['name'], member['email'], 'super_admin')
    success, _, user = engine.update_user('super_admin', owner['id'], owner['name'], owner['email'], 'admin')
    assert success
    assert user['role'] == 'admin'


# --- role permissions ---

def test_default_permissions(engine):
    assert '/users' not in engine.get_allowed_paths('user')
    assert '/dashboard' in engine.get_allowed_paths('user')
    assert '/roles-management' in engine.get_allowed_paths('admin')


def test_set_permissions_keeps_super_admin_role_management(engine):
    success, _ = engine.set_role_permissions({
        'user': {'/users': True, '/unknown': True},
        'super_admin': {'/roles-management': False},
    })
    assert success
    assert '/users' in engine.get_allowed_paths('user')
    assert '/roles-management' in engine.get_allowed_paths('super_admin')


def test_set_permissions_rejects_unknown_role(engine):
    success, message = engine.set_role_permissions({'guest': {'/dashboard': True}})
    assert not success
    assert 'guest' in message


# --- EMIs ---

def _add_emi(engine, user, **overrides):
    args = dict(name="Phone", emi_type='mobile_emi', payment_type='emi', emi_amount=1000,
                total_installments=12, start_date='2024-01-31', today=TODAY)
    args.update(overrides)
    success, message, emi = engine.add_emi(user['id'], **args)
    assert success, message
    return emi


def test_add_emi_derives_amounts_and_due_date(engine, owner):
    emi = _add_emi(engine, owner)
    assert emi['nextDueDate'] == date(2024, 1, 31)
    assert emi['totalAmount'] == Decimal('12000')
    assert emi['remainingAmount'] == Decimal('12000')
    assert emi['dueStatus'] == 'overdue'


def test_record_emi_payment_advances_and_logs_expense(engine, owner):
    emi = _add_emi(engine, owner)
    success, _, emi = engine.record_emi_payment(owner['id'], emi['id'], payment_date='2024-02-05', today=TODAY)

    assert success
    assert emi['paidInstallments'] == 1
    assert emi['nextDueDate'] == date(2024, 2, 29)
    assert emi['remainingAmount'] == Decimal('11000')

    items, _ = engine.get_transactions(owner['id'])
    assert len(items) == 1
    assert items[0]['description'] == "EMI Payment - Phone"
    assert items[0]['category']['name'] == 'EMI'
    assert items[0]['emiId'] == emi['id']


def test_full_payment_completes_after_one_payment(engine, owner):
    emi = _add_emi(engine, owner, payment_type='full_payment', total_installments=None)
    assert emi['totalInstallments'] == 1
    assert emi['dueStatus'] is None

    success, _, emi = engine.record_emi_payment(owner['id'], emi['id'], today=TODAY)
    assert success
    assert emi['status'] == 'completed'
    assert emi['nextDueDate'] is None

    success, message, _ = engine.record_emi_payment(owner['id'], emi['id'], today=TODAY)
    assert not success
    assert message == "This EMI is already completed."


def test_subscription_never_completes(engine, owner):
    emi = _add_emi(engine, owner, payment_type='subscription', start_date='2024-01-10')
    for _ in range(3):
        _, _, emi = engine.record_emi_payment(owner['id'], emi['id'], today=TODAY)
    assert emi['status'] == 'active'
    assert emi['nextDueDate'] == date(2024, 4, 10)


def test_update_emi_cannot_drop_below_paid(engine, owner):
    emi = _add_emi(engine, owner, total_installments=3)
    engine.record_emi_payment(owner['id'], emi['id'], today=TODAY)
    engine.record_emi_payment(owner['id'], emi['id'], today=TODAY)

    success, message, _ = engine.update_emi(owner['id'], emi['id'], "Phone", 'mobile_emi', 'emi', 1000, 1,
                                            '2024-01-31', today=TODAY)
    assert not success
    assert "already paid" in message


def test_emis_are_scoped_to_owner(engine, owner, member):
    emi = _add_emi(engine, owner)
    assert engine.get_emi(member['id'], emi['id']) is None
    success, message = engine.delete_emi(member['id'], emi['id'])
    assert not success
    assert 'not found' in message


# --- payments ---

def _add_payment(engine, user, **overrides):
    args = dict(name="Car Loan", emi_type='ending', category='expense', amount=5000, emi_day=1,
                start_date='2024-01-01', end_date='2024-06-01', today=TODAY)
    args.update(overrides)
    success, message, payment = engine.add_payment(user['id'], **args)
    assert success, message
    return payment


def test_add_payment_validation(engine, owner):
    success, message, _ = engine.add_payment(owner['id'], "X", 'ending', 'expense', 100, 1, '2024-01-01')
    assert not success
    assert message == "Please select an end date for ending EMI."

    success, message, _ = engine.add_payment(owner['id'], "X", 'recurring', 'expense', 100, 32, '2024-01-01')
    assert not success
    assert message == "EMI day must be between 1 and 31."


def test_payments_sorted_by_day_with_derived_fields(engine, owner):
    _add_payment(engine, owner)
    _add_payment(engine, owner, name="Rent", emi_type='recurring', emi_day=25, end_date='2030-01-01')
    _add_payment(engine, owner, name="Chit", category='savings', emi_day=10, end_date='2024-12-10')

    payments = engine.get_payments(owner['id'], today=TODAY)
    assert [p['name'] for p in payments] == ["Car Loan", "Chit", "Rent"]

    car, chit, rent = payments
    assert car['pendingEmis'] == 6
    assert car['nextPaymentDate'] == date(2024, 4, 1)
    assert rent['pendingEmis'] is None
    assert rent['pendingLabel'] == 'Ongoing'
    assert rent['endDate'] is None
    assert chit['nextPaymentDate'] == date(2024, 4, 10)


def test_upcoming_transactions_and_mark_paid(engine, owner):
    payment = _add_payment(engine, owner)
    upcoming = engine.get_upcoming_payment_transactions(owner['id'], days=30, today=TODAY)

    assert [t['paymentDate'] for t in upcoming] == [date(2024, 3, 1), date(2024, 4, 1)]
    assert upcoming[0]['dueStatus'] == 'overdue'

    success, _, tx = engine.set_payment_transaction_status(owner['id'], upcoming[0]['id'], 'paid', today=TODAY)
    assert success
    assert tx['status'] == 'paid'
    assert tx['paidAt'] is not None

    payment = engine.get_payment(owner['id'], payment['id'], today=TODAY)
    assert payment['paidCount'] == 1
    assert payment['pendingEmis'] == 5


def test_sync_is_idempotent(engine, owner):
    _add_payment(engine, owner)
    assert engine.sync_payment_transactions(owner['id'], TODAY)[2] == 3
    assert engine.sync_payment_transactions(owner['id'], TODAY)[2] == 0


def test_paying_every_occurrence_completes_payment(engine, owner):
    payment = _add_payment(engine, owner, emi_day=5, start_date='2024-01-05', end_date='2024-02-05')
    occurrences = engine.get_payment_transactions(owner['id'], payment['id'], today=TODAY)
    assert len(occurrences) == 2

    for tx in occurrences:
        engine.set_payment_transaction_status(owner['id'], tx['id'], 'paid', today=TODAY)
    assert engine.get_payment(owner['id'], payment['id'])['status'] == 'completed'

    engine.set_payment_transaction_status(owner['id'], occurrences[0]['id'], 'pending', today=TODAY)
    assert engine.get_payment(owner['id'], payment['id'])['status'] == 'active'


def test_invalid_transaction_status(engine, owner):
    success, message, _ = engine.set_payment_transaction_status(owner['id'], 1, 'skipped')
    assert not success
    assert 'Invalid status' in message


def test_update_payment_keeps_paid_occurrences(engine, owner):
    payment = _add_payment(engine, owner)
    first = engine.get_payment_transactions(owner['id'], payment['id'], today=TODAY)[0]
    engine.set_payment_transaction_status(owner['id'], first['id'], 'paid', today=TODAY)

    success, _, payment = engine.update_payment(owner['id'], payment['id'], "Car Loan", 'ending', 'expense',
                                                5500, 1, '2024-01-01', '2024-06-01', today=TODAY)
    assert success
    assert payment['paidCount'] == 1
    remaining = engine.get_payment_transactions(owner['id'], payment['id'], status='pending', today=TODAY)
    assert all(t['amount'] == Decimal('5500') for t in remaining)


def test_paid_occurrences_outside_edited_window_are_not_counted(engine, owner):
    payment = _add_payment(engine, owner)
    january = engine.get_payment_transactions(owner['id'], payment['id'], today=TODAY)[0]
    engine.set_payment_transaction_status(owner['id'], january['id'], 'paid', today=TODAY)

    success, _, payment = engine.update_payment(owner['id'], payment['id'], "Car Loan", 'ending', 'expense',
                                                5000, 1, '2024-02-01', '2024-06-01', today=TODAY)
    assert success
    assert payment['paidCount'] == 0
    assert payment['pendingEmis'] == 5


# --- house savings ---

def _seed_savings(engine, user):
    for entry_date, amount in [('2024-01-07', 10000), ('2024-02-07', 15000), ('2024-03-07', 5000)]:
        success, message, _ = engine.add_house_saving(user['id'], user['role'], entry_date, amount)
        assert success, message


def test_house_savings_pagination_and_sort(engine, owner):
    _seed_savings(engine, owner)
    success, _, page = engine.get_house_savings(owner['id'], owner['role'], limit=2)
    assert success
    assert page['total'] == 3
    assert page['totalAmount'] == Decimal('30000')
    assert [e['date'] for e in page['data']] == [date(2024, 3, 7), date(2024, 2, 7)]

    _, _, page = engine.get_house_savings(owner['id'], owner['role'], sort_by='amount', sort_order='asc')
    assert [e['amount'] for e in page['data']] == [Decimal('5000'), Decimal('10000'), Decimal('15000')]

    _, _, page = engine.get_house_savings(owner['id'], owner['role'], from_date='2024-02-01')
    assert page['total'] == 2


def test_house_savings_rejects_non_positive_amount(engine, owner):
    success, message, _ = engine.add_house_saving(owner['id'], owner['role'], '2024-01-01', -5)
    assert not success
    assert message == "Amount must be a positive number."


def test_only_super_admin_acts_for_other_users(engine, owner, member):
    success, message, _ = engine.get_house_savings(member['id'], member['role'], target_user_id=owner['id'])
    assert not success
    assert 'permission' in message

    success, _, entry = engine.add_house_saving(owner['id'], owner['role'], '2024-01-01', 100,
                                                target_user_id=member['id'])
    assert success
    assert entry['userId'] == member['id']


def test_members_cannot_edit_others_entries(engine, owner, member):
    _, _, entry = engine.add_house_saving(owner['id'], owner['role'], '2024-01-01', 100)
    success, message, _ = engine.update_house_saving(member['id'], member['role'], entry['id'], '2024-01-02', 50)
    assert not success
    assert 'not found' in message


def test_house_savings_goal_and_summary(engine, owner):
    _seed_savings(engine, owner)
    assert engine.set_house_savings_goal(owner['id'], owner['role'], 60000)[0]
    assert engine.get_house_savings_goal(owner['id'], owner['role'])[2] == Decimal('60000')

    _, _, summary = engine.get_house_savings_summary(owner['id'], owner['role'], today=TODAY)
    assert summary['totalAmount'] == Decimal('30000')
    assert summary['thisMonth'] == Decimal('5000')
    assert summary['lastMonth'] == Decimal('15000')
    assert summary['goalProgress'] == Decimal('50')
    assert summary['remainingToGoal'] == Decimal('30000')
    assert summary['cumulative'][-1]['cumulative'] == Decimal('30000')


def test_house_savings_csv(engine, owner):
    _seed_savings(engine, owner)
    _, _, text = engine.export_house_savings_csv(owner['id'], owner['role'])
    lines = text.strip().split('\n')
    assert lines[0] == 'Date,Amount,Notes'
    assert lines[1] == '2024-03-07,5000.00,'
    assert len(lines) == 4


# --- ledger & reports ---

def test_transactions_pagination_and_filters(engine, owner):
    salary = next(c for c in engine.get_categories(owner['id'], 'income') if c['name'] == 'Salary')
    engine.add_transaction(owner['id'], 'income', 80000, "Salary", '2024-03-01', 'bank_transfer', salary['id'])
    for day in range(2, 5):
        engine.add_transaction(owner['id'], 'expense', 100 * day, f"Lunch {day}", f'2024-03-0{day}', 'cash')

    items, pagination = engine.get_transactions(owner['id'], page=1, limit=2)
    assert pagination == {'currentPage': 1, 'totalPages': 2, 'totalItems': 4, 'itemsPerPage': 2}
    assert items[0]['description'] == "Lunch 4"

    items, _ = engine.get_transactions(owner['id'], tx_type='income')
    assert [t['category']['name'] for t in items] == ['Salary']

    items, _ = engine.get_transactions(owner['id'], start_date='2024-03-03')
    assert len(items) == 2


def test_transaction_rejects_foreign_category(engine, owner, member):
    foreign = engine.get_categories(owner['id'], 'expense')[0]
    success, message, _ = engine.add_transaction(member['id'], 'expense', 10, "Tea", '2024-03-01', 'cash',
                                                 foreign['id'])
    assert not success
    assert message == "Invalid category specified."


def test_dashboard_and_spending_report(engine, owner):
    engine.add_transaction(owner['id'], 'income', 50000, "Salary", '2024-03-01', 'bank_transfer')
    engine.add_transaction(owner['id'], 'expense', 1200, "Groceries", '2024-03-05', 'cash')
    engine.add_transaction(owner['id'], 'expense', 800, "Dinner", '2024-02-20', 'cash')

    dashboard = engine.get_dashboard_data(owner['id'], 'month', today=TODAY)
    assert dashboard['summary']['totalIncome'] == Decimal('50000')
    assert dashboard['summary']['totalExpenses'] == Decimal('1200')
    assert dashboard['summary']['netAmount'] == Decimal('48800')
    assert len(dashboard['monthlyTrend']) == 6
    assert dashboard['monthlyTrend'][-1]['month'] == 'Mar 2024'
    assert dashboard['monthlyTrend'][-2]['expenses'] == Decimal('800')

    report = engine.get_spending_report(owner['id'], '2024-02-01', '2024-03-31')
    assert report['totalSpending'] == Decimal('2000')
    assert report['categoryBreakdown'][0]['name'] == 'Uncategorized'
    assert report['categoryBreakdown'][0]['count'] == 2


def test_emi_summary(engine, owner):
    phone = _add_emi(engine, owner)
    _add_emi(engine, owner, name="Laptop", emi_type='laptop_emi', emi_amount=2000, total_installments=6,
             start_date='2024-03-20')
    engine.record_emi_payment(owner['id'], phone['id'], today=TODAY)

    summary = engine.get_emi_summary(owner['id'], today=TODAY)
    assert summary['summary']['totalEMIAmount'] == Decimal('24000')
    assert summary['summary']['totalPaidAmount'] == Decimal('1000')
    assert summary['summary']['activeEMICount'] == 2
    assert len(summary['recentEMIPayments']) == 1
    assert [p['name'] for p in summary['upcomingPayments']] == ["Phone", "Laptop"]


def test_forecast_and_financial_freedom(engine, owner):
    _add_payment(engine, owner)
    _add_payment(engine, owner, name="Rent", emi_type='recurring', amount=20000, emi_day=5)

    forecast = engine.get_payment_forecast(owner['id'], 5, today=TODAY)
    assert [b['total'] for b in forecast['series']] == [Decimal('25000')] * 4 + [Decimal('20000')]
    assert forecast['stats']['lowestMonth']['key'] == '2024-07'

    freedom = engine.get_financial_freedom(owner['id'], today=TODAY)
    assert freedom['metrics']['debtToIncomeRatio'] == Decimal('25')
    assert freedom['prioritizedPayments'][0]['name'] == "Rent"
    assert freedom['timeToFreedom'] == 3
