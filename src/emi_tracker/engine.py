"""
EMI Tracker - Personal Finance Engine

This module contains the core FinanceEngine class that provides a stateless
engine for tracking EMIs, monthly payments, house savings and a simple
income/expense ledger.

The engine provides:
- Multi-user authentication with bcrypt password hashing and roles
- EMI tracking with installment progress and automatic due dates
- Monthly payment schedules (ending or recurring) with per-occurrence status
- House savings entries with a per-user goal
- Income/expense ledger with categories
- Dashboards, spending/income reports, forecasts and financial-freedom metrics

Key Design Principles:
- **Stateless Architecture**: All state is stored in the SQLite database
- **User Segregation**: Every query is scoped by user_id
- **Exact Money**: Amounts stored as TEXT and computed with Decimal
- **One Date Rulebook**: All schedule math lives in emi_tracker.schedule

License: MIT
"""

import csv
import datetime
import io
import logging
import math
import re
import sqlite3
from decimal import Decimal, InvalidOperation
from pathlib import Path

import bcrypt

from . import planning
from . import schedule
from .config import Config

logger = logging.getLogger(__name__)


ROLES = ('user', 'admin', 'super_admin')
ADMIN_ROLES = ('admin', 'super_admin')

EMI_TYPES = {
    'rent': 'Rent',
    'personal_loan': 'Personal Loan',
    'mobile_emi': 'Mobile EMI',
    'laptop_emi': 'Laptop EMI',
    'savings_emi': 'Savings EMI',
    'car_loan': 'Car Loan',
    'home_loan': 'Home Loan',
    'business_loan': 'Business Loan',
    'education_loan': 'Education Loan',
    'credit_card': 'Credit Card',
    'appliance_emi': 'Appliance EMI',
    'furniture_emi': 'Furniture EMI',
    'bike_emi': 'Bike EMI',
    'cheetu': 'Cheetu',
    'other': 'Other',
}
EMI_PAYMENT_TYPES = ('emi', 'subscription', 'full_payment')
EMI_STATUSES = ('active', 'completed', 'defaulted')

PAYMENT_EMI_TYPES = ('ending', 'recurring')
PAYMENT_CATEGORIES = ('expense', 'savings')
PAYMENT_STATUSES = ('active', 'completed')
PAYMENT_TX_STATUSES = ('pending', 'paid')

TRANSACTION_TYPES = ('income', 'expense')
PAYMENT_METHODS = ('cash', 'credit_card', 'debit_card', 'bank_transfer', 'digital_wallet', 'other')

MENU_PATHS = [
    {'path': '/dashboard', 'name': 'Dashboard'},
    {'path': '/payments', 'name': 'Payments'},
    {'path': '/emis', 'name': 'EMIs'},
    {'path': '/emi-forecast', 'name': 'EMI Forecast'},
    {'path': '/financial-freedom', 'name': 'Financial Freedom'},
    {'path': '/house-savings', 'name': 'House Savings'},
    {'path': '/transactions', 'name': 'Transactions'},
    {'path': '/reports', 'name': 'Reports'},
    {'path': '/user-profile', 'name': 'User Profile'},
    {'path': '/users', 'name': 'Users'},
    {'path': '/roles-management', 'name': 'Roles Management'},
]
ADMIN_ONLY_PATHS = ('/users', '/roles-management')

DEFAULT_CATEGORIES = [
    ('Salary', 'income', '#10b981'),
    ('Freelance', 'income', '#22c55e'),
    ('Other Income', 'income', '#84cc16'),
    ('Food & Dining', 'expense', '#f97316'),
    ('Transportation', 'expense', '#3b82f6'),
    ('Housing', 'expense', '#8b5cf6'),
    ('Utilities', 'expense', '#06b6d4'),
    ('Shopping', 'expense', '#ec4899'),
    ('Healthcare', 'expense', '#ef4444'),
    ('EMI', 'expense', '#6366f1'),
    ('Other', 'expense', '#6b7280'),
]
EMI_CATEGORY = ('EMI', 'expense', '#6366f1')
UNCATEGORIZED = {'id': None, 'name': 'Uncategorized', 'color': '#6c757d'}

HOUSE_SAVINGS_SORT_FIELDS = {'date': 'date', 'amount': 'CAST(amount AS REAL)', 'createdAt': 'created_at'}
DASHBOARD_PERIODS = ('week', 'month', 'year')
TREND_MONTHS = 6
UPCOMING_LOOKBACK_DAYS = 30
MIN_PASSWORD_LENGTH = 6
MAX_PAGE_SIZE = 100

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
ZERO = Decimal('0.00')


class FinanceEngine:
    """
    Stateless personal finance engine for EMI Tracker.

    This class provides all business logic for the application without
    maintaining state between method calls. All data is persisted in SQLite
    and retrieved on demand.

    Every method that touches user data takes the acting user's id and scopes
    its queries to it. Write methods return a tuple whose first two items are
    (success bool, message str); most also return the resulting record.

    Methods are organized into functional groups:
    - Authentication & profile
    - User administration and role permissions
    - EMIs
    - Payments and payment transactions
    - House savings
    - Categories and ledger transactions
    - Reports and planning

    Example:
        engine = FinanceEngine()
        user, msg = engine.login_user("asha@example.com", "secret123")
        if user:
            payments = engine.get_payments(user['id'])
    """

    def __init__(self, db_path=None, bcrypt_rounds=None):
        self.db_path = Path(db_path or Config.DATABASE_PATH)
        self.bcrypt_rounds = bcrypt_rounds or Config.BCRYPT_ROUNDS

    # =============================================================================
    # SQLITE HELPER METHODS
    # =============================================================================

    @staticmethod
    def _to_money_str(value):
        """Convert Decimal or float to string for SQLite storage"""
        if value is None:
            return None
        return str(Decimal(str(value)).quantize(Decimal('0.01')))

    @staticmethod
    def _from_money_str(value):
        """Convert string from SQLite to Decimal for calculations"""
        if value is None or value == '':
            return ZERO
        return Decimal(str(value))

    @staticmethod
    def _parse_amount(value):
        """Parse user input into a finite Decimal, or None when it is not a number."""
        if value is None or value == '' or isinstance(value, bool):
            return None
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
        if not amount.is_finite():
            return None
        return amount

    @staticmethod
    def _parse_int(value):
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _to_date_str(value):
        """Convert a date (or ISO string) to SQLite TEXT format"""
        d = schedule.parse_date(value)
        return d.strftime(schedule.DATE_FORMAT) if d else None

    @staticmethod
    def _safe_date(value):
        """Parse a date, returning None for anything unparseable."""
        try:
            return schedule.parse_date(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _row_to_dict(row):
        """Convert sqlite3.Row to dictionary"""
        if row is None:
            return None
        return dict(row)

    @staticmethod
    def _rows_to_dicts(rows):
        """Convert list of sqlite3.Row objects to list of dicts"""
        return [dict(row) for row in rows]

    @staticmethod
    def _today(today=None):
        return schedule.parse_date(today) or datetime.date.today()

    @staticmethod
    def _page_args(page, limit, default_limit=10):
        page = FinanceEngine._parse_int(page) or 1
        limit = FinanceEngine._parse_int(limit) or default_limit
        return max(1, page), max(1, min(MAX_PAGE_SIZE, limit))

    # =============================================================================
    # DATABASE CONNECTION
    # =============================================================================

    def _get_db_connection(self):
        """
        Establish a new database connection.

        Returns:
            tuple: (connection, cursor) - SQLite connection and cursor

        Note:
            Callers are responsible for closing the connection and cursor.
            SQLite connections use Row factory for dictionary-style access.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))

        # Enable foreign key constraints (CRITICAL for data integrity)
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.row_factory = sqlite3.Row
        return conn, conn.cursor()

    # =============================================================================
    # API SHAPES
    # =============================================================================

    def _user_to_api(self, row):
        if row is None:
            return None
        return {
            'id': row['user_id'],
            '_id': row['user_id'],
            'name': row['name'],
            'email': row['email'],
            'role': row['role'],
            'monthlyIncome': self._from_money_str(row['monthly_income']),
            'currency': row['currency'],
            'houseSavingsGoal': self._from_money_str(row['house_savings_goal']),
            'createdAt': row['created_at'],
        }

    def _emi_to_api(self, row, today):
        emi_amount = self._from_money_str(row['emi_amount'])
        total = row['total_installments'] or 0
        paid = row['paid_installments'] or 0
        next_due = schedule.parse_date(row['next_due_date'])

        days = None
        if row['payment_type'] != 'full_payment' and next_due is not None:
            days = schedule.days_until(next_due, today)

        return {
            'id': row['emi_id'],
            '_id': row['emi_id'],
            'name': row['name'],
            'type': row['type'],
            'typeName': EMI_TYPES.get(row['type'], row['type'].replace('_', ' ')),
            'paymentType': row['payment_type'],
            'emiAmount': emi_amount,
            'totalInstallments': total,
            'paidInstallments': paid,
            'totalAmount': emi_amount * total,
            'paidAmount': emi_amount * paid,
            'remainingAmount': emi_amount * max(0, total - paid),
            'progress': round(paid / total * 100, 2) if total else 0,
            'startDate': schedule.parse_date(row['start_date']),
            'nextDueDate': next_due,
            'daysUntilDue': days,
            'dueStatus': schedule.due_status(days),
            'status': row['status'],
            'interestRate': row['interest_rate'],
            'notes': row['notes'] or '',
        }

    def _payment_to_api(self, row, today):
        paid_count = row['paid_count'] or 0
        start = schedule.parse_date(row['start_date'])
        end = schedule.parse_date(row['end_date'])
        pending = schedule.pending_emis(row['emi_type'], start, end, row['emi_day'], paid_count, today)

        if row['emi_type'] == 'recurring':
            pending_label = 'Ongoing'
        elif pending is None:
            pending_label = '-'
        else:
            pending_label = str(pending)

        total = None
        if row['emi_type'] == 'ending' and start and end:
            total = schedule.count_occurrences(start, end, row['emi_day'])

        next_date = None
        if row['status'] == 'active':
            next_date = schedule.next_payment_date(start, row['emi_day'], today, end)

        return {
            'id': row['payment_id'],
            '_id': row['payment_id'],
            'name': row['name'],
            'emiType': row['emi_type'],
            'category': row['category'],
            'amount': self._from_money_str(row['amount']),
            'emiDay': row['emi_day'],
            'startDate': start,
            'endDate': end,
            'paidCount': paid_count,
            'totalInstallments': total,
            'pendingEmis': pending,
            'pendingLabel': pending_label,
            'nextPaymentDate': next_date,
            'status': row['status'],
            'notes': row['notes'] or '',
        }

    def _payment_tx_to_api(self, row, today):
        payment_date = schedule.parse_date(row['payment_date'])
        days = schedule.days_until(payment_date, today)
        return {
            'id': row['transaction_id'],
            '_id': row['transaction_id'],
            'paymentId': row['payment_id'],
            'paymentName': row['payment_name'],
            'category': row['category'],
            'emiType': row['emi_type'],
            'paymentDate': payment_date,
            'amount': self._from_money_str(row['amount']),
            'status': row['status'],
            'paidAt': row['paid_at'],
            'daysUntilDue': days,
            'dueStatus': schedule.due_status(days) if row['status'] == 'pending' else None,
        }

    def _saving_to_api(self, row):
        return {
            'id': row['entry_id'],
            '_id': row['entry_id'],
            'userId': row['user_id'],
            'date': schedule.parse_date(row['date']),
            'amount': self._from_money_str(row['amount']),
            'notes': row['notes'] or '',
            'createdAt': row['created_at'],
        }

    def _transaction_to_api(self, row):
        if row['category_id'] is not None:
            category = {'id': row['category_id'], 'name': row['category_name'], 'color': row['category_color']}
        else:
            category = dict(UNCATEGORIZED)
        return {
            'id': row['transaction_id'],
            '_id': row['transaction_id'],
            'type': row['type'],
            'amount': self._from_money_str(row['amount']),
            'description': row['description'],
            'date': schedule.parse_date(row['date']),
            'paymentMethod': row['payment_method'],
            'category': category,
            'emiId': row['emi_id'],
            'notes': row['notes'] or '',
        }

    # =============================================================================
    # USER AUTHENTICATION METHODS
    # =============================================================================

    def _hash_password(self, password):
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    @staticmethod
    def _check_password(password, password_hash):
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))

    def _validate_user_fields(self, name, email, password=None, monthly_income=None):
        """Return (clean dict, error message). Password is only checked when given."""
        name = (name or '').strip()
        email = (email or '').strip().lower()
        if not name:
            return None, "Name is required."
        if not EMAIL_PATTERN.match(email):
            return None, "A valid email address is required."
        if password is not None and len(password) < MIN_PASSWORD_LENGTH:
            return None, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."

        income = ZERO
        if monthly_income not in (None, ''):
            income = self._parse_amount(monthly_income)
            if income is None or income < 0:
                return None, "Monthly income cannot be negative."
        return {'name': name, 'email': email, 'monthly_income': income}, None

    def initialize_default_categories(self, user_id, cursor):
        """Seed the standard income/expense categories for a new user."""
        cursor.executemany(
            "INSERT OR IGNORE INTO categories (user_id, name, type, color) VALUES (?, ?, ?, ?)",
            [(user_id, name, cat_type, color) for name, cat_type, color in DEFAULT_CATEGORIES]
        )

    def _insert_user(self, cursor, clean, password, role, currency='INR'):
        cursor.execute("SELECT 1 FROM users WHERE email = ?", (clean['email'],))
        if cursor.fetchone():
            return None, "Email already exists."

        cursor.execute(
            """
            INSERT INTO users (name, email, password_hash, role, monthly_income, currency)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (clean['name'], clean['email'], self._hash_password(password), role,
             self._to_money_str(clean['monthly_income']), (currency or 'INR').upper())
        )
        user_id = cursor.lastrowid
        self.initialize_default_categories(user_id, cursor)
        return user_id, None

    def register_user(self, name, email, password, currency='INR', monthly_income=0):
        """
        Register a new user with secure password hashing.

        The very first account becomes the super admin; everyone after that
        starts as a regular user. Default categories are created as well.

        Args:
            name (str): Display name
            email (str): Login email (unique, case-insensitive)
            password (str): Plain-text password, at least 6 characters
            currency (str): ISO currency code, defaults to INR
            monthly_income (number): Used for debt-to-income metrics

        Returns:
            tuple: (success bool, message str, user dict or None)
        """
        clean, error = self._validate_user_fields(name, email, password or '', monthly_income)
        if error:
            return False, error, None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT COUNT(*) FROM users")
            role = 'super_admin' if cursor.fetchone()[0] == 0 else 'user'

            user_id, error = self._insert_user(cursor, clean, password, role, currency)
            if error:
                return False, error, None
            conn.commit()

            cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            logger.info("Registered user %s with role %s", user_id, role)
            return True, "User registered successfully.", self._user_to_api(cursor.fetchone())
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("register_user failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def login_user(self, email, password):
        """
        Authenticate a user with email and password.

        Returns:
            tuple: (user dict or None, message str)
        """
        email = (email or '').strip().lower()
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT * FROM users WHERE email = ?", (email,))
            row = cursor.fetchone()
            if not row or not self._check_password(password or '', row['password_hash']):
                return None, "Invalid email or password."
            return self._user_to_api(row), "Login successful."
        finally:
            cursor.close()
            conn.close()

    def get_user(self, user_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            return self._user_to_api(cursor.fetchone())
        finally:
            cursor.close()
            conn.close()

    def update_profile(self, user_id, name, email, currency=None, monthly_income=None):
        """Update the caller's own profile (role and password are not touched here)."""
        clean, error = self._validate_user_fields(name, email, monthly_income=monthly_income)
        if error:
            return False, error, None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            current = cursor.fetchone()
            if not current:
                return False, "User not found.", None

            cursor.execute("SELECT 1 FROM users WHERE email = ? AND user_id != ?", (clean['email'], user_id))
            if cursor.fetchone():
                return False, "Email already exists.", None

            if monthly_income in (None, ''):
                clean['monthly_income'] = self._from_money_str(current['monthly_income'])

            cursor.execute(
                "UPDATE users SET name = ?, email = ?, currency = ?, monthly_income = ? WHERE user_id = ?",
                (clean['name'], clean['email'], (currency or current['currency']).upper(),
                 self._to_money_str(clean['monthly_income']), user_id)
            )
            conn.commit()
            cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            return True, "Profile updated successfully.", self._user_to_api(cursor.fetchone())
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("update_profile failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def change_password(self, user_id, current_password, new_password):
        """
        Change a user's password after verifying their current password.

        Returns:
            tuple: (success bool, message str)
        """
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT password_hash FROM users WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            if not row:
                return False, "User not found."
            if not self._check_password(current_password or '', row['password_hash']):
                return False, "Current password is incorrect."
            if len(new_password or '') < MIN_PASSWORD_LENGTH:
                return False, f"New password must be at least {MIN_PASSWORD_LENGTH} characters long."

            cursor.execute(
                "UPDATE users SET password_hash = ? WHERE user_id = ?",
                (self._hash_password(new_password), user_id)
            )
            conn.commit()
            return True, "Password changed successfully."
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("change_password failed")
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # USER ADMINISTRATION
    # =============================================================================

    @staticmethod
    def _can_manage(actor_role, target_role):
        """Admins manage users and admins; only a super admin touches super admins."""
        if actor_role not in ADMIN_ROLES:
            return False
        return target_role != 'super_admin' or actor_role == 'super_admin'

    def find_user_by_email(self, email):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT * FROM users WHERE email = ?", ((email or '').strip().lower(),))
            return self._user_to_api(cursor.fetchone())
        finally:
            cursor.close()
            conn.close()

    def list_users(self):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT * FROM users ORDER BY name COLLATE NOCASE")
            return [self._user_to_api(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def create_user(self, actor_role, name, email, password, role='user', currency='INR', monthly_income=0):
        """Create a user on behalf of an admin."""
        role = role or 'user'
        if role not in ROLES:
            return False, f"Invalid role. Must be one of: {', '.join(ROLES)}", None
        if not self._can_manage(actor_role, role):
            return False, "You do not have permission to manage super admin accounts.", None
        if not password:
            return False, "Password is required for new users.", None

        clean, error = self._validate_user_fields(name, email, password, monthly_income)
        if error:
            return False, error, None

        conn, cursor = self._get_db_connection()
        try:
            user_id, error = self._insert_user(cursor, clean, password, role, currency)
            if error:
                return False, error, None
            conn.commit()
            cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            return True, "User created successfully.", self._user_to_api(cursor.fetchone())
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("create_user failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def update_user(self, actor_role, user_id, name, email, role, password=None):
        if role not in ROLES:
            return False, f"Invalid role. Must be one of: {', '.join(ROLES)}", None

        clean, error = self._validate_user_fields(name, email, password or None)
        if error:
            return False, error, None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT role FROM users WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            if not row:
                return False, "User not found.", None
            if not self._can_manage(actor_role, row['role']) or not self._can_manage(actor_role, role):
                return False, "You do not have permission to manage super admin accounts.", None
            if row['role'] == 'super_admin' and role != 'super_admin':
                cursor.execute("SELECT COUNT(*) FROM users WHERE role = 'super_admin'")
                if cursor.fetchone()[0] <= 1:
                    return False, "At least one super admin account is required.", None

            cursor.execute("SELECT 1 FROM users WHERE email = ? AND user_id != ?", (clean['email'], user_id))
            if cursor.fetchone():
                return False, "Email already exists.", None

            cursor.execute(
                "UPDATE users SET name = ?, email = ?, role = ? WHERE user_id = ?",
                (clean['name'], clean['email'], role, user_id)
            )
            if password:
                cursor.execute(
                    "UPDATE users SET password_hash = ? WHERE user_id = ?",
                    (self._hash_password(password), user_id)
                )
            conn.commit()
            cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            return True, "User updated successfully.", self._user_to_api(cursor.fetchone())
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("update_user failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def delete_user(self, actor_id, actor_role, user_id):
        if int(actor_id) == int(user_id):
            return False, "You cannot delete your own account."

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT role FROM users WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            if not row:
                return False, "User not found."
            if not self._can_manage(actor_role, row['role']):
                return False, "You do not have permission to manage super admin accounts."

            cursor.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
            conn.commit()
            logger.info("User %s deleted by user %s", user_id, actor_id)
            return True, "User deleted successfully."
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("delete_user failed")
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # ROLE PERMISSIONS
    # =============================================================================

    @staticmethod
    def default_permissions():
        defaults = {role: {} for role in ROLES}
        for item in MENU_PATHS:
            path = item['path']
            defaults['super_admin'][path] = True
            defaults['admin'][path] = True
            defaults['user'][path] = path not in ADMIN_ONLY_PATHS
        return defaults

    def get_role_permissions(self):
        """Default matrix overlaid with whatever has been saved."""
        permissions = self.default_permissions()
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("SELECT role, path, allowed FROM role_permissions")
            for row in cursor.fetchall():
                if row['role'] in permissions and row['path'] in permissions[row['role']]:
                    permissions[row['role']][row['path']] = bool(row['allowed'])
            return permissions
        finally:
            cursor.close()
            conn.close()

    def set_role_permissions(self, permissions):
        """
        Save a full or partial role → {path: allowed} matrix.

        Unknown menu paths are ignored. Super admins always keep access to
        role management so the matrix can never lock everyone out.
        """
        if not isinstance(permissions, dict):
            return False, "Permissions must be an object keyed by role."
        unknown = [role for role in permissions if role not in ROLES]
        if unknown:
            return False, f"Invalid role(s): {', '.join(unknown)}"

        known_paths = {item['path'] for item in MENU_PATHS}
        rows = []
        for role, paths in permissions.items():
            if not isinstance(paths, dict):
                return False, f"Permissions for '{role}' must be an object keyed by path."
            for path, allowed in paths.items():
                if path not in known_paths:
                    continue
                if role == 'super_admin' and path == '/roles-management':
                    allowed = True
                rows.append((role, path, 1 if allowed else 0))

        conn, cursor = self._get_db_connection()
        try:
            cursor.executemany(
                """
                INSERT INTO role_permissions (role, path, allowed) VALUES (?, ?, ?)
                ON CONFLICT(role, path) DO UPDATE SET allowed = excluded.allowed
                """,
                rows
            )
            conn.commit()
            return True, "Permissions saved successfully."
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("set_role_permissions failed")
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    def get_allowed_paths(self, role):
        permissions = self.get_role_permissions().get(role, {})
        return [item['path'] for item in MENU_PATHS if permissions.get(item['path'])]

    # =============================================================================
    # EMI METHODS
    # =============================================================================

    def _validate_emi(self, name, emi_type, payment_type, emi_amount, total_installments, start_date, interest_rate=None):
        name = (name or '').strip()
        if not name:
            return None, "EMI name is required."
        emi_type = emi_type or 'personal_loan'
        if emi_type not in EMI_TYPES:
            return None, f"Invalid EMI type. Must be one of: {', '.join(EMI_TYPES)}"
        payment_type = payment_type or 'emi'
        if payment_type not in EMI_PAYMENT_TYPES:
            return None, f"Invalid payment type. Must be one of: {', '.join(EMI_PAYMENT_TYPES)}"

        amount = self._parse_amount(emi_amount)
        if amount is None or amount <= 0:
            return None, "EMI amount must be a positive number."

        if payment_type == 'full_payment':
            total = 1
        elif payment_type == 'subscription':
            # Subscriptions are indefinite
            total = 0
        else:
            total = self._parse_int(total_installments)
            if total is None or total < 1:
                return None, "Total installments must be at least 1."

        start = self._safe_date(start_date)
        if start is None:
            return None, "A valid start date is required."

        rate = None
        if interest_rate not in (None, ''):
            rate = self._parse_amount(interest_rate)
            if rate is None or rate < 0:
                return None, "Interest rate cannot be negative."
            rate = float(rate)

        return {
            'name': name, 'type': emi_type, 'payment_type': payment_type,
            'emi_amount': amount, 'total_installments': total, 'start_date': start,
            'interest_rate': rate,
        }, None

    @staticmethod
    def _emi_progress_state(payment_type, start, paid, total, current_status='active'):
        """Return (next_due_date, status) after paid/total changes."""
        next_due = schedule.emi_next_due_date(start, paid, total, payment_type)
        if payment_type != 'subscription' and paid >= total:
            return None, 'completed'
        if current_status == 'completed':
            return next_due, 'active'
        return next_due, current_status

    def _select_emi(self, cursor, user_id, emi_id):
        cursor.execute("SELECT * FROM emis WHERE emi_id = ? AND user_id = ?", (emi_id, user_id))
        return cursor.fetchone()

    def get_emis(self, user_id, status=None, today=None):
        """List a user's EMIs, active ones first and then by next due date."""
        today = self._today(today)
        conn, cursor = self._get_db_connection()
        try:
            query = "SELECT * FROM emis WHERE user_id = ?"
            params = [user_id]
            if status:
                query += " AND status = ?"
                params.append(status)
            query += """
                ORDER BY CASE status WHEN 'active' THEN 0 WHEN 'defaulted' THEN 1 ELSE 2 END,
                         next_due_date IS NULL, next_due_date, name COLLATE NOCASE
            """
            cursor.execute(query, params)
            return [self._emi_to_api(row, today) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def get_emi(self, user_id, emi_id, today=None):
        conn, cursor = self._get_db_connection()
        try:
            row = self._select_emi(cursor, user_id, emi_id)
            return self._emi_to_api(row, self._today(today)) if row else None
        finally:
            cursor.close()
            conn.close()

    def add_emi(self, user_id, name, emi_type, payment_type, emi_amount, total_installments,
                start_date, notes='', interest_rate=None, today=None):
        """
        Add a new EMI.

        Full payments are a single installment; subscriptions have no
        installment count and never complete. The first due date is the
        start date.

        Returns:
            tuple: (success bool, message str, emi dict or None)
        """
        clean, error = self._validate_emi(name, emi_type, payment_type, emi_amount, total_installments,
                                          start_date, interest_rate)
        if error:
            return False, error, None

        next_due, status = self._emi_progress_state(
            clean['payment_type'], clean['start_date'], 0, clean['total_installments'])

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                """
                INSERT INTO emis (user_id, name, type, payment_type, emi_amount, total_installments,
                                  paid_installments, start_date, next_due_date, status, interest_rate, notes)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?)
                """,
                (user_id, clean['name'], clean['type'], clean['payment_type'],
                 self._to_money_str(clean['emi_amount']), clean['total_installments'],
                 self._to_date_str(clean['start_date']), self._to_date_str(next_due), status,
                 clean['interest_rate'], notes or '')
            )
            emi_id = cursor.lastrowid
            conn.commit()
            row = self._select_emi(cursor, user_id, emi_id)
            return True, f"EMI '{clean['name']}' added.", self._emi_to_api(row, self._today(today))
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("add_emi failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def update_emi(self, user_id, emi_id, name, emi_type, payment_type, emi_amount, total_installments,
                   start_date, notes='', interest_rate=None, status=None, today=None):
        clean, error = self._validate_emi(name, emi_type, payment_type, emi_amount, total_installments,
                                          start_date, interest_rate)
        if error:
            return False, error, None
        if status is not None and status not in EMI_STATUSES:
            return False, f"Invalid status. Must be one of: {', '.join(EMI_STATUSES)}", None

        conn, cursor = self._get_db_connection()
        try:
            row = self._select_emi(cursor, user_id, emi_id)
            if not row:
                return False, "EMI not found or you do not have permission to edit it.", None

            paid = row['paid_installments']
            if clean['payment_type'] != 'subscription' and paid > clean['total_installments']:
                return False, f"Total installments cannot be less than the {paid} already paid.", None

            next_due, new_status = self._emi_progress_state(
                clean['payment_type'], clean['start_date'], paid, clean['total_installments'],
                status or row['status'])

            cursor.execute(
                """
                UPDATE emis
                SET name = ?, type = ?, payment_type = ?, emi_amount = ?, total_installments = ?,
                    start_date = ?, next_due_date = ?, status = ?, interest_rate = ?, notes = ?
                WHERE emi_id = ? AND user_id = ?
                """,
                (clean['name'], clean['type'], clean['payment_type'],
                 self._to_money_str(clean['emi_amount']), clean['total_installments'],
                 self._to_date_str(clean['start_date']), self._to_date_str(next_due), new_status,
                 clean['interest_rate'], notes or '', emi_id, user_id)
            )
            conn.commit()
            row = self._select_emi(cursor, user_id, emi_id)
            return True, "EMI updated successfully.", self._emi_to_api(row, self._today(today))
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("update_emi failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def delete_emi(self, user_id, emi_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("DELETE FROM emis WHERE emi_id = ? AND user_id = ?", (emi_id, user_id))
            if cursor.rowcount == 0:
                return False, "EMI not found or you do not have permission to delete it."
            conn.commit()
            return True, "EMI deleted successfully."
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("delete_emi failed")
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    def record_emi_payment(self, user_id, emi_id, amount=None, payment_date=None, notes='', today=None):
        """
        Record one installment payment against an EMI.

        Increments the paid installment counter, moves the next due date one
        month on, marks the EMI completed after the last installment, and logs
        the payment as an expense in the ledger's "EMI" category.

        Args:
            amount (number, optional): Amount paid, defaults to the EMI amount
            payment_date (str/date, optional): Defaults to today

        Returns:
            tuple: (success bool, message str, emi dict or None)
        """
        today = self._today(today)
        conn, cursor = self._get_db_connection()
        try:
            row = self._select_emi(cursor, user_id, emi_id)
            if not row:
                return False, "EMI not found or you do not have permission to pay it.", None
            if row['status'] == 'completed':
                return False, "This EMI is already completed.", None

            paid_amount = self._from_money_str(row['emi_amount'])
            if amount not in (None, ''):
                paid_amount = self._parse_amount(amount)
                if paid_amount is None or paid_amount <= 0:
                    return False, "Payment amount must be a positive number.", None

            paid_on = today
            if payment_date not in (None, ''):
                paid_on = self._safe_date(payment_date)
                if paid_on is None:
                    return False, "A valid payment date is required.", None

            paid = row['paid_installments'] + 1
            next_due, status = self._emi_progress_state(
                row['payment_type'], schedule.parse_date(row['start_date']), paid,
                row['total_installments'], 'active')

            cursor.execute(
                "UPDATE emis SET paid_installments = ?, next_due_date = ?, status = ? WHERE emi_id = ?",
                (paid, self._to_date_str(next_due), status, emi_id)
            )

            category_id = self._get_or_create_category(cursor, user_id, *EMI_CATEGORY)
            cursor.execute(
                """
                INSERT INTO transactions (user_id, type, amount, description, date, payment_method,
                                          category_id, emi_id, notes)
                VALUES (?, 'expense', ?, ?, ?, 'bank_transfer', ?, ?, ?)
                """,
                (user_id, self._to_money_str(paid_amount), f"EMI Payment - {row['name']}",
                 self._to_date_str(paid_on), category_id, emi_id, notes or '')
            )
            conn.commit()

            row = self._select_emi(cursor, user_id, emi_id)
            message = "EMI payment recorded successfully."
            if status == 'completed':
                message = f"Final installment recorded. '{row['name']}' is now completed."
            return True, message, self._emi_to_api(row, today)
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("record_emi_payment failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # PAYMENT METHODS
    # =============================================================================

    PAYMENT_SELECT = """
        SELECT p.*,
               (SELECT COUNT(*) FROM payment_transactions pt
                WHERE pt.payment_id = p.payment_id AND pt.status = 'paid'
                  AND pt.payment_date >= p.start_date
                  AND (p.end_date IS NULL OR pt.payment_date <= p.end_date)) AS paid_count
        FROM payments p
    """

    def _validate_payment(self, name, emi_type, category, amount, emi_day, start_date, end_date):
        name = (name or '').strip()
        if not name:
            return None, "Please enter EMI name."
        emi_type = emi_type or 'ending'
        if emi_type not in PAYMENT_EMI_TYPES:
            return None, f"Invalid EMI type. Must be one of: {', '.join(PAYMENT_EMI_TYPES)}"
        category = category or 'expense'
        if category not in PAYMENT_CATEGORIES:
            return None, f"Invalid category. Must be one of: {', '.join(PAYMENT_CATEGORIES)}"

        amount = self._parse_amount(amount)
        if amount is None or amount <= 0:
            return None, "Please enter a valid amount."

        emi_day = self._parse_int(emi_day)
        if emi_day is None or not 1 <= emi_day <= 31:
            return None, "EMI day must be between 1 and 31."

        start = self._safe_date(start_date)
        if start is None:
            return None, "A valid start date is required."

        end = None
        if emi_type == 'ending':
            end = self._safe_date(end_date)
            if end is None:
                return None, "Please select an end date for ending EMI."

        return {
            'name': name, 'emi_type': emi_type, 'category': category, 'amount': amount,
            'emi_day': emi_day, 'start_date': start, 'end_date': end,
        }, None

    def _select_payment(self, cursor, user_id, payment_id):
        cursor.execute(self.PAYMENT_SELECT + " WHERE p.payment_id = ? AND p.user_id = ?", (payment_id, user_id))
        return cursor.fetchone()

    def get_payments(self, user_id, status=None, today=None):
        """List payments sorted by EMI day, each with its pending count and next date."""
        today = self._today(today)
        conn, cursor = self._get_db_connection()
        try:
            query = self.PAYMENT_SELECT + " WHERE p.user_id = ?"
            params = [user_id]
            if status:
                query += " AND p.status = ?"
                params.append(status)
            query += " ORDER BY p.emi_day, p.name COLLATE NOCASE"
            cursor.execute(query, params)
            return [self._payment_to_api(row, today) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def get_payment(self, user_id, payment_id, today=None):
        conn, cursor = self._get_db_connection()
        try:
            row = self._select_payment(cursor, user_id, payment_id)
            return self._payment_to_api(row, self._today(today)) if row else None
        finally:
            cursor.close()
            conn.close()

    def add_payment(self, user_id, name, emi_type, category, amount, emi_day, start_date,
                    end_date=None, notes='', today=None):
        """
        Add a monthly payment schedule.

        Args:
            emi_type (str): 'ending' (needs end_date) or 'recurring' (end_date ignored)
            category (str): 'expense' or 'savings'
            emi_day (int): Day of month the payment falls on (1-31, clamped per month)

        Returns:
            tuple: (success bool, message str, payment dict or None)
        """
        clean, error = self._validate_payment(name, emi_type, category, amount, emi_day, start_date, end_date)
        if error:
            return False, error, None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                """
                INSERT INTO payments (user_id, name, emi_type, category, amount, emi_day, start_date, end_date, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, clean['name'], clean['emi_type'], clean['category'],
                 self._to_money_str(clean['amount']), clean['emi_day'],
                 self._to_date_str(clean['start_date']), self._to_date_str(clean['end_date']), notes or '')
            )
            payment_id = cursor.lastrowid
            conn.commit()
            row = self._select_payment(cursor, user_id, payment_id)
            return True, f"Payment '{clean['name']}' added.", self._payment_to_api(row, self._today(today))
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("add_payment failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def update_payment(self, user_id, payment_id, name, emi_type, category, amount, emi_day, start_date,
                       end_date=None, notes='', status=None, today=None):
        """
        Update a payment schedule.

        Pending (unpaid) occurrences are discarded so they are rebuilt from the
        new schedule on the next sync; paid occurrences are kept.
        """
        clean, error = self._validate_payment(name, emi_type, category, amount, emi_day, start_date, end_date)
        if error:
            return False, error, None
        if status is not None and status not in PAYMENT_STATUSES:
            return False, f"Invalid status. Must be one of: {', '.join(PAYMENT_STATUSES)}", None

        conn, cursor = self._get_db_connection()
        try:
            row = self._select_payment(cursor, user_id, payment_id)
            if not row:
                return False, "Payment not found or you do not have permission to edit it.", None

            cursor.execute(
                """
                UPDATE payments
                SET name = ?, emi_type = ?, category = ?, amount = ?, emi_day = ?,
                    start_date = ?, end_date = ?, notes = ?, status = ?
                WHERE payment_id = ? AND user_id = ?
                """,
                (clean['name'], clean['emi_type'], clean['category'], self._to_money_str(clean['amount']),
                 clean['emi_day'], self._to_date_str(clean['start_date']), self._to_date_str(clean['end_date']),
                 notes or '', status or row['status'], payment_id, user_id)
            )
            cursor.execute(
                "DELETE FROM payment_transactions WHERE payment_id = ? AND status = 'pending'",
                (payment_id,)
            )
            conn.commit()
            row = self._select_payment(cursor, user_id, payment_id)
            return True, "Payment updated successfully.", self._payment_to_api(row, self._today(today))
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("update_payment failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def delete_payment(self, user_id, payment_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute("DELETE FROM payments WHERE payment_id = ? AND user_id = ?", (payment_id, user_id))
            if cursor.rowcount == 0:
                return False, "Payment not found or you do not have permission to delete it."
            conn.commit()
            return True, "Payment deleted successfully."
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("delete_payment failed")
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # PAYMENT TRANSACTIONS (one row per scheduled occurrence)
    # =============================================================================

    PAYMENT_TX_SELECT = """
        SELECT pt.*, p.name AS payment_name, p.category, p.emi_type
        FROM payment_transactions pt
        JOIN payments p ON p.payment_id = pt.payment_id
    """

    def _sync_payment_transactions(self, cursor, user_id, through_date):
        cursor.execute(
            "SELECT * FROM payments WHERE user_id = ? AND status = 'active'", (user_id,)
        )
        rows = []
        for payment in cursor.fetchall():
            end = schedule.parse_date(payment['end_date'])
            window_end = min(end, through_date) if end else through_date
            for due in schedule.occurrences(payment['start_date'], window_end, payment['emi_day']):
                rows.append((payment['payment_id'], user_id, self._to_date_str(due), payment['amount']))

        before = cursor.connection.total_changes
        cursor.executemany(
            """
            INSERT OR IGNORE INTO payment_transactions (payment_id, user_id, payment_date, amount)
            VALUES (?, ?, ?, ?)
            """,
            rows
        )
        return cursor.connection.total_changes - before

    def sync_payment_transactions(self, user_id, through_date=None):
        """
        Materialize every scheduled occurrence of the user's active payments up
        to through_date (inclusive). Safe to call repeatedly.

        Returns:
            tuple: (success bool, message str, created count int)
        """
        through_date = self._today(through_date)
        conn, cursor = self._get_db_connection()
        try:
            created = self._sync_payment_transactions(cursor, user_id, through_date)
            conn.commit()
            return True, f"{created} payment transaction(s) scheduled.", created
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("sync_payment_transactions failed")
            return False, f"An error occurred: {e}", 0
        finally:
            cursor.close()
            conn.close()

    def get_payment_transactions(self, user_id, payment_id=None, status=None, today=None):
        """Every materialized occurrence up to today, oldest first."""
        today = self._today(today)
        conn, cursor = self._get_db_connection()
        try:
            self._sync_payment_transactions(cursor, user_id, today)
            conn.commit()
            query = self.PAYMENT_TX_SELECT + " WHERE pt.user_id = ?"
            params = [user_id]
            if payment_id is not None:
                query += " AND pt.payment_id = ?"
                params.append(payment_id)
            if status:
                query += " AND pt.status = ?"
                params.append(status)
            cursor.execute(query + " ORDER BY pt.payment_date, pt.transaction_id", params)
            return [self._payment_tx_to_api(row, today) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def get_upcoming_payment_transactions(self, user_id, days=30, today=None):
        """
        Pending occurrences due from 30 days ago through `days` days ahead.

        Occurrences are synced first, so newly added payments show up without
        any extra step.
        """
        today = self._today(today)
        days = max(0, self._parse_int(days) or 0)
        horizon = today + datetime.timedelta(days=days)
        lookback = today - datetime.timedelta(days=UPCOMING_LOOKBACK_DAYS)

        conn, cursor = self._get_db_connection()
        try:
            self._sync_payment_transactions(cursor, user_id, horizon)
            conn.commit()
            cursor.execute(
                self.PAYMENT_TX_SELECT + """
                WHERE pt.user_id = ? AND pt.status = 'pending' AND p.status = 'active'
                  AND pt.payment_date BETWEEN ? AND ?
                ORDER BY pt.payment_date, p.name COLLATE NOCASE
                """,
                (user_id, self._to_date_str(lookback), self._to_date_str(horizon))
            )
            return [self._payment_tx_to_api(row, today) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def set_payment_transaction_status(self, user_id, transaction_id, status, today=None):
        """
        Mark one occurrence paid or pending again.

        An ending payment whose every scheduled occurrence is paid becomes
        'completed'; reverting an occurrence reactivates it.

        Returns:
            tuple: (success bool, message str, transaction dict or None)
        """
        if status not in PAYMENT_TX_STATUSES:
            return False, f"Invalid status. Must be one of: {', '.join(PAYMENT_TX_STATUSES)}", None

        today = self._today(today)
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                self.PAYMENT_TX_SELECT + " WHERE pt.transaction_id = ? AND pt.user_id = ?",
                (transaction_id, user_id)
            )
            tx = cursor.fetchone()
            if not tx:
                return False, "Payment transaction not found.", None

            paid_at = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S') if status == 'paid' else None
            cursor.execute(
                "UPDATE payment_transactions SET status = ?, paid_at = ? WHERE transaction_id = ?",
                (status, paid_at, transaction_id)
            )

            payment = self._select_payment(cursor, user_id, tx['payment_id'])
            if payment['emi_type'] == 'ending' and payment['end_date']:
                total = schedule.count_occurrences(payment['start_date'], payment['end_date'], payment['emi_day'])
                new_status = 'completed' if payment['paid_count'] >= total else 'active'
                if new_status != payment['status']:
                    cursor.execute(
                        "UPDATE payments SET status = ? WHERE payment_id = ?",
                        (new_status, payment['payment_id'])
                    )
                    logger.info("Payment %s is now %s", payment['payment_id'], new_status)
            conn.commit()

            cursor.execute(self.PAYMENT_TX_SELECT + " WHERE pt.transaction_id = ?", (transaction_id,))
            return True, f"Payment marked as {status}.", self._payment_tx_to_api(cursor.fetchone(), today)
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("set_payment_transaction_status failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # HOUSE SAVINGS
    # =============================================================================

    def _resolve_owner(self, actor_id, actor_role, target_user_id):
        """Super admins may act for another user; everyone else only for themselves."""
        if target_user_id in (None, '') or str(target_user_id) == str(actor_id):
            return int(actor_id), None
        if actor_role != 'super_admin':
            return None, "You do not have permission to manage another user's savings."
        target = self._parse_int(target_user_id)
        if target is None or self.get_user(target) is None:
            return None, "User not found."
        return target, None

    def _validate_saving(self, entry_date, amount):
        d = self._safe_date(entry_date)
        if d is None:
            return None, "A valid date is required."
        amount = self._parse_amount(amount)
        if amount is None or amount <= 0:
            return None, "Amount must be a positive number."
        return {'date': d, 'amount': amount}, None

    def _house_savings_filter(self, owner_id, from_date, to_date):
        where = "WHERE user_id = ?"
        params = [owner_id]
        start = self._safe_date(from_date)
        end = self._safe_date(to_date)
        if start:
            where += " AND date >= ?"
            params.append(self._to_date_str(start))
        if end:
            where += " AND date <= ?"
            params.append(self._to_date_str(end))
        return where, params

    def get_house_savings(self, actor_id, actor_role, target_user_id=None, from_date=None, to_date=None,
                          sort_by='date', sort_order='desc', page=1, limit=10):
        """
        Page through house savings entries.

        Returns:
            tuple: (success bool, message str, dict with data, total, page,
                    limit, totalAmount) - totalAmount covers every matching
                    entry, not just the current page
        """
        owner_id, error = self._resolve_owner(actor_id, actor_role, target_user_id)
        if error:
            return False, error, None

        page, limit = self._page_args(page, limit)
        order_column = HOUSE_SAVINGS_SORT_FIELDS.get(sort_by, 'date')
        direction = 'ASC' if str(sort_order).lower() == 'asc' else 'DESC'
        where, params = self._house_savings_filter(owner_id, from_date, to_date)

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(f"SELECT amount FROM house_savings {where}", params)
            amounts = [self._from_money_str(r['amount']) for r in cursor.fetchall()]
            total = len(amounts)
            total_amount = sum(amounts, ZERO)

            cursor.execute(
                f"SELECT * FROM house_savings {where} ORDER BY {order_column} {direction}, entry_id {direction} "
                "LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit]
            )
            entries = [self._saving_to_api(row) for row in cursor.fetchall()]
            return True, "OK", {
                'data': entries,
                'total': total,
                'page': page,
                'limit': limit,
                'totalPages': max(1, math.ceil(total / limit)),
                'totalAmount': total_amount,
            }
        finally:
            cursor.close()
            conn.close()

    def add_house_saving(self, actor_id, actor_role, entry_date, amount, notes='', target_user_id=None):
        owner_id, error = self._resolve_owner(actor_id, actor_role, target_user_id)
        if error:
            return False, error, None
        clean, error = self._validate_saving(entry_date, amount)
        if error:
            return False, error, None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "INSERT INTO house_savings (user_id, date, amount, notes) VALUES (?, ?, ?, ?)",
                (owner_id, self._to_date_str(clean['date']), self._to_money_str(clean['amount']), notes or '')
            )
            entry_id = cursor.lastrowid
            conn.commit()
            cursor.execute("SELECT * FROM house_savings WHERE entry_id = ?", (entry_id,))
            return True, "Savings added successfully.", self._saving_to_api(cursor.fetchone())
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("add_house_saving failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def update_house_saving(self, actor_id, actor_role, entry_id, entry_date, amount, notes=''):
        clean, error = self._validate_saving(entry_date, amount)
        if error:
            return False, error, None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                """
                UPDATE house_savings SET date = ?, amount = ?, notes = ?
                WHERE entry_id = ? AND (user_id = ? OR ? = 'super_admin')
                """,
                (self._to_date_str(clean['date']), self._to_money_str(clean['amount']), notes or '',
                 entry_id, actor_id, actor_role)
            )
            if cursor.rowcount == 0:
                return False, "Savings entry not found or you do not have permission to edit it.", None
            conn.commit()
            cursor.execute("SELECT * FROM house_savings WHERE entry_id = ?", (entry_id,))
            return True, "Savings updated successfully.", self._saving_to_api(cursor.fetchone())
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("update_house_saving failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def delete_house_saving(self, actor_id, actor_role, entry_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "DELETE FROM house_savings WHERE entry_id = ? AND (user_id = ? OR ? = 'super_admin')",
                (entry_id, actor_id, actor_role)
            )
            if cursor.rowcount == 0:
                return False, "Savings entry not found or you do not have permission to delete it."
            conn.commit()
            return True, "Savings entry deleted."
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("delete_house_saving failed")
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    def get_house_savings_goal(self, actor_id, actor_role, target_user_id=None):
        owner_id, error = self._resolve_owner(actor_id, actor_role, target_user_id)
        if error:
            return False, error, None
        user = self.get_user(owner_id)
        if user is None:
            return False, "User not found.", None
        return True, "OK", user['houseSavingsGoal']

    def set_house_savings_goal(self, actor_id, actor_role, goal, target_user_id=None):
        owner_id, error = self._resolve_owner(actor_id, actor_role, target_user_id)
        if error:
            return False, error, None
        goal = self._parse_amount(goal)
        if goal is None or goal < 0:
            return False, "Please enter a valid goal amount.", None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "UPDATE users SET house_savings_goal = ? WHERE user_id = ?",
                (self._to_money_str(goal), owner_id)
            )
            conn.commit()
            return True, "Goal updated.", self._from_money_str(self._to_money_str(goal))
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("set_house_savings_goal failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def get_house_savings_summary(self, actor_id, actor_role, target_user_id=None, from_date=None,
                                  to_date=None, today=None):
        """
        Totals behind the house savings page: overall, this month, last month,
        goal progress, and a cumulative series for charting.
        """
        owner_id, error = self._resolve_owner(actor_id, actor_role, target_user_id)
        if error:
            return False, error, None

        today = self._today(today)
        this_month = schedule.month_start(today)
        last_month = schedule.add_months(this_month, -1, day=1)
        where, params = self._house_savings_filter(owner_id, from_date, to_date)

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(f"SELECT date, amount FROM house_savings {where} ORDER BY date, entry_id", params)
            rows = cursor.fetchall()
            cursor.execute("SELECT house_savings_goal FROM users WHERE user_id = ?", (owner_id,))
            goal = self._from_money_str(cursor.fetchone()['house_savings_goal'])
        finally:
            cursor.close()
            conn.close()

        total = ZERO
        this_month_sum = ZERO
        last_month_sum = ZERO
        cumulative = []
        monthly = {}
        for row in rows:
            d = schedule.parse_date(row['date'])
            amount = self._from_money_str(row['amount'])
            total += amount
            cumulative.append({'date': d, 'amount': amount, 'cumulative': total})
            monthly[d.strftime('%Y-%m')] = monthly.get(d.strftime('%Y-%m'), ZERO) + amount
            if this_month <= d <= schedule.month_end(this_month):
                this_month_sum += amount
            elif last_month <= d <= schedule.month_end(last_month):
                last_month_sum += amount

        progress = min(Decimal('100'), total / goal * 100) if goal > 0 else ZERO
        return True, "OK", {
            'userId': owner_id,
            'totalAmount': total,
            'entryCount': len(rows),
            'thisMonth': this_month_sum,
            'lastMonth': last_month_sum,
            'goal': goal,
            'goalProgress': progress,
            'remainingToGoal': max(ZERO, goal - total),
            'lastEntryDate': cumulative[-1]['date'] if cumulative else None,
            'monthly': [{'month': key, 'total': value} for key, value in sorted(monthly.items())],
            'cumulative': cumulative,
        }

    def export_house_savings_csv(self, actor_id, actor_role, target_user_id=None, from_date=None, to_date=None):
        """
        Export matching entries as CSV text with a Date,Amount,Notes header.

        Returns:
            tuple: (success bool, message str, csv text or None)
        """
        owner_id, error = self._resolve_owner(actor_id, actor_role, target_user_id)
        if error:
            return False, error, None

        where, params = self._house_savings_filter(owner_id, from_date, to_date)
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(f"SELECT * FROM house_savings {where} ORDER BY date DESC, entry_id DESC", params)
            rows = cursor.fetchall()
        finally:
            cursor.close()
            conn.close()

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        writer.writerow(['Date', 'Amount', 'Notes'])
        for row in rows:
            writer.writerow([row['date'], self._to_money_str(row['amount']), row['notes'] or ''])
        return True, "OK", buffer.getvalue()

    # =============================================================================
    # CATEGORIES
    # =============================================================================

    def _get_or_create_category(self, cursor, user_id, name, cat_type, color):
        cursor.execute(
            "SELECT category_id FROM categories WHERE user_id = ? AND name = ? AND type = ?",
            (user_id, name, cat_type)
        )
        row = cursor.fetchone()
        if row:
            return row['category_id']
        cursor.execute(
            "INSERT INTO categories (user_id, name, type, color) VALUES (?, ?, ?, ?)",
            (user_id, name, cat_type, color)
        )
        return cursor.lastrowid

    def get_categories(self, user_id, cat_type=None):
        conn, cursor = self._get_db_connection()
        try:
            query = "SELECT category_id, name, type, color FROM categories WHERE user_id = ?"
            params = [user_id]
            if cat_type:
                query += " AND type = ?"
                params.append(cat_type)
            cursor.execute(query + " ORDER BY type, name COLLATE NOCASE", params)
            return [
                {'id': r['category_id'], '_id': r['category_id'], 'name': r['name'],
                 'type': r['type'], 'color': r['color']}
                for r in cursor.fetchall()
            ]
        finally:
            cursor.close()
            conn.close()

    def add_category(self, user_id, name, cat_type, color='#6366f1'):
        name = (name or '').strip()
        if not name:
            return False, "Category name is required.", None
        if cat_type not in TRANSACTION_TYPES:
            return False, f"Invalid category type. Must be one of: {', '.join(TRANSACTION_TYPES)}", None

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "SELECT 1 FROM categories WHERE user_id = ? AND name = ? AND type = ?",
                (user_id, name, cat_type)
            )
            if cursor.fetchone():
                return False, f"Category '{name}' already exists.", None
            cursor.execute(
                "INSERT INTO categories (user_id, name, type, color) VALUES (?, ?, ?, ?)",
                (user_id, name, cat_type, color or '#6366f1')
            )
            category_id = cursor.lastrowid
            conn.commit()
            return True, f"Category '{name}' added.", {
                'id': category_id, '_id': category_id, 'name': name, 'type': cat_type, 'color': color or '#6366f1'
            }
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("add_category failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # LEDGER TRANSACTIONS
    # =============================================================================

    TRANSACTION_SELECT = """
        SELECT t.*, c.name AS category_name, c.color AS category_color
        FROM transactions t
        LEFT JOIN categories c ON c.category_id = t.category_id
    """

    def _validate_transaction(self, cursor, user_id, tx_type, amount, description, tx_date,
                              payment_method, category_id, today):
        if tx_type not in TRANSACTION_TYPES:
            return None, f"Invalid type. Must be one of: {', '.join(TRANSACTION_TYPES)}"
        amount = self._parse_amount(amount)
        if amount is None or amount <= 0:
            return None, "Amount must be a positive number."
        description = (description or '').strip()
        if not description:
            return None, "Description is required."

        d = today
        if tx_date not in (None, ''):
            d = self._safe_date(tx_date)
            if d is None:
                return None, "A valid date is required."

        payment_method = payment_method or 'other'
        if payment_method not in PAYMENT_METHODS:
            return None, f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}"

        if category_id not in (None, ''):
            cursor.execute(
                "SELECT 1 FROM categories WHERE category_id = ? AND user_id = ?", (category_id, user_id)
            )
            if not cursor.fetchone():
                return None, "Invalid category specified."
        else:
            category_id = None

        return {
            'type': tx_type, 'amount': amount, 'description': description, 'date': d,
            'payment_method': payment_method, 'category_id': category_id,
        }, None

    def get_transactions(self, user_id, page=1, limit=10, tx_type=None, start_date=None, end_date=None):
        """
        Page through ledger transactions, newest first.

        Returns:
            tuple: (list of transaction dicts, pagination dict with currentPage,
                    totalPages, totalItems, itemsPerPage)
        """
        page, limit = self._page_args(page, limit)
        where = "WHERE t.user_id = ?"
        params = [user_id]
        if tx_type in TRANSACTION_TYPES:
            where += " AND t.type = ?"
            params.append(tx_type)
        start = self._safe_date(start_date)
        end = self._safe_date(end_date)
        if start:
            where += " AND t.date >= ?"
            params.append(self._to_date_str(start))
        if end:
            where += " AND t.date <= ?"
            params.append(self._to_date_str(end))

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(f"SELECT COUNT(*) FROM transactions t {where}", params)
            total = cursor.fetchone()[0]
            cursor.execute(
                self.TRANSACTION_SELECT + f" {where} ORDER BY t.date DESC, t.transaction_id DESC LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit]
            )
            items = [self._transaction_to_api(row) for row in cursor.fetchall()]
            pagination = {
                'currentPage': page,
                'totalPages': max(1, math.ceil(total / limit)),
                'totalItems': total,
                'itemsPerPage': limit,
            }
            return items, pagination
        finally:
            cursor.close()
            conn.close()

    def add_transaction(self, user_id, tx_type, amount, description, tx_date=None, payment_method='other',
                        category_id=None, notes='', today=None):
        conn, cursor = self._get_db_connection()
        try:
            clean, error = self._validate_transaction(cursor, user_id, tx_type, amount, description, tx_date,
                                                      payment_method, category_id, self._today(today))
            if error:
                return False, error, None
            cursor.execute(
                """
                INSERT INTO transactions (user_id, type, amount, description, date, payment_method, category_id, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, clean['type'], self._to_money_str(clean['amount']), clean['description'],
                 self._to_date_str(clean['date']), clean['payment_method'], clean['category_id'], notes or '')
            )
            tx_id = cursor.lastrowid
            conn.commit()
            cursor.execute(self.TRANSACTION_SELECT + " WHERE t.transaction_id = ?", (tx_id,))
            return True, "Transaction added.", self._transaction_to_api(cursor.fetchone())
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("add_transaction failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def update_transaction(self, user_id, transaction_id, tx_type, amount, description, tx_date=None,
                           payment_method='other', category_id=None, notes='', today=None):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "SELECT 1 FROM transactions WHERE transaction_id = ? AND user_id = ?", (transaction_id, user_id)
            )
            if not cursor.fetchone():
                return False, "Transaction not found or you do not have permission to edit it.", None

            clean, error = self._validate_transaction(cursor, user_id, tx_type, amount, description, tx_date,
                                                      payment_method, category_id, self._today(today))
            if error:
                return False, error, None
            cursor.execute(
                """
                UPDATE transactions
                SET type = ?, amount = ?, description = ?, date = ?, payment_method = ?, category_id = ?, notes = ?
                WHERE transaction_id = ? AND user_id = ?
                """,
                (clean['type'], self._to_money_str(clean['amount']), clean['description'],
                 self._to_date_str(clean['date']), clean['payment_method'], clean['category_id'], notes or '',
                 transaction_id, user_id)
            )
            conn.commit()
            cursor.execute(self.TRANSACTION_SELECT + " WHERE t.transaction_id = ?", (transaction_id,))
            return True, "Transaction updated.", self._transaction_to_api(cursor.fetchone())
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("update_transaction failed")
            return False, f"An error occurred: {e}", None
        finally:
            cursor.close()
            conn.close()

    def delete_transaction(self, user_id, transaction_id):
        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                "DELETE FROM transactions WHERE transaction_id = ? AND user_id = ?", (transaction_id, user_id)
            )
            if cursor.rowcount == 0:
                return False, "Transaction not found or you do not have permission to delete it."
            conn.commit()
            return True, "Transaction deleted."
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("delete_transaction failed")
            return False, f"An error occurred: {e}"
        finally:
            cursor.close()
            conn.close()

    # =============================================================================
    # REPORTS
    # =============================================================================

    @staticmethod
    def _period_start(period, today):
        if period == 'week':
            return today - datetime.timedelta(days=6)
        if period == 'year':
            return today.replace(month=1, day=1)
        return schedule.month_start(today)

    def _sum_by_type(self, cursor, user_id, start, end):
        cursor.execute(
            "SELECT type, amount FROM transactions WHERE user_id = ? AND date BETWEEN ? AND ?",
            (user_id, self._to_date_str(start), self._to_date_str(end))
        )
        totals = {'income': ZERO, 'expense': ZERO, 'count': 0}
        for row in cursor.fetchall():
            totals[row['type']] += self._from_money_str(row['amount'])
            totals['count'] += 1
        return totals

    def get_dashboard_data(self, user_id, period='month', today=None):
        """
        Summary cards, six-month income/expense trend and recent activity.

        Args:
            period (str): 'week' (last 7 days), 'month' (month to date) or
                          'year' (year to date) for the summary cards

        Returns:
            dict: summary, monthlyTrend, recentTransactions, emiOverview,
                  paymentOverview
        """
        today = self._today(today)
        period = period if period in DASHBOARD_PERIODS else 'month'
        start = self._period_start(period, today)

        conn, cursor = self._get_db_connection()
        try:
            totals = self._sum_by_type(cursor, user_id, start, today)

            trend = []
            first_month = schedule.add_months(schedule.month_start(today), -(TREND_MONTHS - 1), day=1)
            for i in range(TREND_MONTHS):
                month = schedule.add_months(first_month, i, day=1)
                month_totals = self._sum_by_type(cursor, user_id, month, schedule.month_end(month))
                trend.append({
                    'month': month.strftime('%b %Y'),
                    'key': month.strftime('%Y-%m'),
                    'income': month_totals['income'],
                    'expenses': month_totals['expense'],
                    'net': month_totals['income'] - month_totals['expense'],
                })

            cursor.execute(
                self.TRANSACTION_SELECT + " WHERE t.user_id = ? ORDER BY t.date DESC, t.transaction_id DESC LIMIT 5",
                (user_id,)
            )
            recent = [self._transaction_to_api(row) for row in cursor.fetchall()]

            cursor.execute(
                "SELECT payment_type, emi_amount FROM emis WHERE user_id = ? AND status = 'active'", (user_id,)
            )
            active_emis = cursor.fetchall()
            cursor.execute(
                "SELECT category, amount FROM payments WHERE user_id = ? AND status = 'active'", (user_id,)
            )
            active_payments = cursor.fetchall()
        finally:
            cursor.close()
            conn.close()

        return {
            'period': period,
            'startDate': start,
            'endDate': today,
            'summary': {
                'totalIncome': totals['income'],
                'totalExpenses': totals['expense'],
                'netAmount': totals['income'] - totals['expense'],
                'transactionCount': totals['count'],
            },
            'monthlyTrend': trend,
            'recentTransactions': recent,
            'emiOverview': {
                'activeCount': len(active_emis),
                'monthlyAmount': sum(
                    (self._from_money_str(r['emi_amount']) for r in active_emis if r['payment_type'] != 'full_payment'),
                    ZERO),
            },
            'paymentOverview': {
                'activeCount': len(active_payments),
                'monthlyExpenses': sum(
                    (self._from_money_str(r['amount']) for r in active_payments if r['category'] == 'expense'), ZERO),
                'monthlySavings': sum(
                    (self._from_money_str(r['amount']) for r in active_payments if r['category'] == 'savings'), ZERO),
            },
        }

    def _category_report(self, user_id, tx_type, start_date=None, end_date=None):
        where = "WHERE t.user_id = ? AND t.type = ?"
        params = [user_id, tx_type]
        start = self._safe_date(start_date)
        end = self._safe_date(end_date)
        if start:
            where += " AND t.date >= ?"
            params.append(self._to_date_str(start))
        if end:
            where += " AND t.date <= ?"
            params.append(self._to_date_str(end))

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(self.TRANSACTION_SELECT + f" {where}", params)
            rows = cursor.fetchall()
        finally:
            cursor.close()
            conn.close()

        groups = {}
        grand_total = ZERO
        for row in rows:
            amount = self._from_money_str(row['amount'])
            grand_total += amount
            key = row['category_id']
            if key not in groups:
                if key is None:
                    groups[key] = dict(UNCATEGORIZED, total=ZERO, count=0)
                else:
                    groups[key] = {'id': key, 'name': row['category_name'], 'color': row['category_color'],
                                   'total': ZERO, 'count': 0}
            groups[key]['total'] += amount
            groups[key]['count'] += 1

        breakdown = sorted(groups.values(), key=lambda g: g['total'], reverse=True)
        for group in breakdown:
            group['average'] = group['total'] / group['count']
            group['percentage'] = group['total'] / grand_total * 100 if grand_total else ZERO

        return grand_total, breakdown, start, end

    def get_spending_report(self, user_id, start_date=None, end_date=None):
        total, breakdown, start, end = self._category_report(user_id, 'expense', start_date, end_date)
        return {'totalSpending': total, 'categoryBreakdown': breakdown, 'startDate': start, 'endDate': end}

    def get_income_report(self, user_id, start_date=None, end_date=None):
        total, breakdown, start, end = self._category_report(user_id, 'income', start_date, end_date)
        return {'totalIncome': total, 'categoryBreakdown': breakdown, 'startDate': start, 'endDate': end}

    def get_emi_summary(self, user_id, today=None):
        """
        EMI portfolio overview.

        Returns:
            dict: summary (amount totals and counts), emiBreakdown (grouped by
                  EMI type), recentEMIPayments (latest ledger entries created by
                  recorded EMI payments) and upcomingPayments (active EMIs due
                  from 30 days ago onward, soonest first)
        """
        today = self._today(today)
        emis = self.get_emis(user_id, today=today)

        summary = {
            'totalEMIAmount': ZERO,
            'totalPaidAmount': ZERO,
            'totalRemainingAmount': ZERO,
            'monthlyEMIAmount': ZERO,
            'activeEMICount': 0,
            'completedEMICount': 0,
            'totalEMICount': len(emis),
        }
        groups = {}
        upcoming = []
        for emi in emis:
            summary['totalEMIAmount'] += emi['totalAmount']
            summary['totalPaidAmount'] += emi['paidAmount']
            summary['totalRemainingAmount'] += emi['remainingAmount']
            if emi['status'] == 'active':
                summary['activeEMICount'] += 1
                if emi['paymentType'] != 'full_payment':
                    summary['monthlyEMIAmount'] += emi['emiAmount']
            elif emi['status'] == 'completed':
                summary['completedEMICount'] += 1

            group = groups.setdefault(emi['type'], {
                'type': emi['type'], 'typeName': emi['typeName'], 'count': 0,
                'totalAmount': ZERO, 'paidAmount': ZERO, 'emis': [],
            })
            group['count'] += 1
            group['totalAmount'] += emi['totalAmount']
            group['paidAmount'] += emi['paidAmount']
            group['emis'].append(emi)

            if emi['status'] == 'active' and emi['nextDueDate']:
                days = schedule.days_until(emi['nextDueDate'], today)
                if days >= -UPCOMING_LOOKBACK_DAYS:
                    upcoming.append({
                        'id': emi['id'],
                        'name': emi['name'],
                        'dueDate': emi['nextDueDate'],
                        'amount': emi['emiAmount'],
                        'daysUntilDue': days,
                        'dueStatus': schedule.due_status(days),
                        'type': emi['type'],
                    })

        upcoming.sort(key=lambda p: p['daysUntilDue'])

        conn, cursor = self._get_db_connection()
        try:
            cursor.execute(
                self.TRANSACTION_SELECT + """
                WHERE t.user_id = ? AND t.emi_id IS NOT NULL
                ORDER BY t.date DESC, t.transaction_id DESC LIMIT 10
                """,
                (user_id,)
            )
            recent = [self._transaction_to_api(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

        return {
            'summary': summary,
            'emiBreakdown': sorted(groups.values(), key=lambda g: g['totalAmount'], reverse=True),
            'recentEMIPayments': recent,
            'upcomingPayments': upcoming,
        }

    # =============================================================================
    # PLANNING
    # =============================================================================

    def get_payment_forecast(self, user_id, months=planning.DEFAULT_FORECAST_MONTHS, today=None):
        """Month-by-month projection of payment totals plus supporting stats."""
        today = self._today(today)
        months = planning.clamp_months(months)
        payments = self.get_payments(user_id, today=today)
        series = planning.forecast_series(payments, months, today)
        return {
            'months': months,
            'series': series,
            'stats': planning.forecast_stats(series),
            'categoryBreakdown': planning.category_breakdown(payments),
            'insights': planning.forecast_insights(payments, today),
        }

    def get_financial_freedom(self, user_id, today=None):
        """Debt burden metrics, priorities and recommendations over active payments."""
        today = self._today(today)
        user = self.get_user(user_id)
        if user is None:
            return None
        payments = self.get_payments(user_id, status='active', today=today)
        metrics = planning.financial_metrics(payments, user['monthlyIncome'], today)
        prioritized = planning.prioritize(payments)
        return {
            'metrics': metrics,
            'prioritizedPayments': prioritized,
            'timeToFreedom': planning.time_to_freedom(payments, today),
            'recommendations': planning.recommendations(metrics, prioritized),
        }
