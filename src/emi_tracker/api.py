"""
EMI Tracker - Flask REST API

This module provides the RESTful API consumed by the EMI Tracker web client.
It uses Flask with Flask-Login (JWT bearer tokens) and serves endpoints for:

Authentication:
- Registration, login, profile and password changes
- Role-based menu permissions

Tracking:
- EMIs with installment payments
- Monthly payments and their per-occurrence transactions
- House savings with goal, summary and CSV export
- Income/expense ledger with categories

Analytics:
- Dashboard, spending, income and EMI reports
- Payment forecast and financial-freedom metrics

Security:
- JWT bearer tokens resolved through Flask-Login's request_loader
- User data segregation (all endpoints scope by current_user.id)
- Admin-only user management and role configuration
- CORS enabled for the browser client

License: MIT
"""

import datetime
import logging
from decimal import Decimal

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from flask_login import current_user, login_required
from werkzeug.exceptions import HTTPException

from .auth import create_token, login_manager, role_required
from .config import Config
from .engine import MENU_PATHS, FinanceEngine
from .migration_runner import run_all_pending
from .setup_sqlite import create_database, verify_schema

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')


class CustomJSONProvider(DefaultJSONProvider):
    """
    JSON provider for Decimal and date values.

    Converts:
    - Decimal to float
    - datetime to ISO 8601 (e.g. "2025-10-18T09:30:00")
    - date to ISO 8601 with noon appended so browsers never shift the day
    """
    sort_keys = False

    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime.datetime):
            return obj.isoformat()
        if isinstance(obj, datetime.date):
            return obj.isoformat() + 'T12:00:00'
        return super().default(obj)


# =============================================================================
# HELPERS
# =============================================================================

def get_engine():
    return current_app.extensions['finance_engine']


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _client_today():
    """The client's local date when it sends one (?client_date=YYYY-MM-DD), else server today."""
    value = request.args.get('client_date') or _json_body().get('client_date')
    return FinanceEngine._safe_date(value)


def _error_status(message, default=400):
    lowered = message.lower()
    if 'not found' in lowered:
        return 404
    if 'permission' in lowered:
        return 403
    if 'already exists' in lowered:
        return 409
    if message.startswith('An error occurred'):
        return 500
    return default


def _fail(message, status_code=None):
    return jsonify({"success": False, "message": message}), status_code or _error_status(message)


def _ok(data=None, message=None, status_code=200, **extra):
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status_code


def _user_id():
    return int(current_user.id)


# =============================================================================
# AUTH ROUTES
# =============================================================================

@api_bp.route('/auth/register', methods=['POST'])
def register_api():
    data = _json_body()
    success, message, user = get_engine().register_user(
        name=data.get('name'),
        email=data.get('email'),
        password=data.get('password'),
        currency=data.get('currency') or 'INR',
        monthly_income=data.get('monthlyIncome', 0),
    )
    if not success:
        return _fail(message)
    return _ok(message=message, status_code=201, token=create_token(user['id'], user['role']), user=user)


@api_bp.route('/auth/login', methods=['POST'])
def login_api():
    data = _json_body()
    if not data.get('email') or not data.get('password'):
        return _fail("Email and password are required.", 400)

    user, message = get_engine().login_user(data['email'], data['password'])
    if not user:
        logger.info("Failed login for %s", data.get('email'))
        return _fail(message, 401)
    return _ok(message=message, token=create_token(user['id'], user['role']), user=user)


@api_bp.route('/auth/me', methods=['GET'])
@login_required
def me_api():
    user = get_engine().get_user(_user_id())
    if not user:
        return _fail("User not found.")
    return _ok(user=user)


@api_bp.route('/auth/profile', methods=['PUT'])
@login_required
def profile_api():
    data = _json_body()
    success, message, user = get_engine().update_profile(
        user_id=_user_id(),
        name=data.get('name'),
        email=data.get('email'),
        currency=data.get('currency'),
        monthly_income=data.get('monthlyIncome'),
    )
    if not success:
        return _fail(message)
    return _ok(message=message, user=user)


@api_bp.route('/auth/password', methods=['PUT'])
@login_required
def password_api():
    data = _json_body()
    if not data.get('currentPassword') or not data.get('newPassword'):
        return _fail("Current and new passwords are required.", 400)
    success, message = get_engine().change_password(_user_id(), data['currentPassword'], data['newPassword'])
    if not success:
        return _fail(message, 401 if 'incorrect' in message else None)
    return _ok(message=message)


# =============================================================================
# EMI ROUTES
# =============================================================================

def _emi_args(data):
    return dict(
        name=data.get('name'),
        emi_type=data.get('type'),
        payment_type=data.get('paymentType'),
        emi_amount=data.get('emiAmount'),
        total_installments=data.get('totalInstallments'),
        start_date=data.get('startDate'),
        notes=data.get('notes', ''),
        interest_rate=data.get('interestRate'),
    )


@api_bp.route('/emis', methods=['GET'])
@login_required
def get_emis_api():
    emis = get_engine().get_emis(_user_id(), status=request.args.get('status'), today=_client_today())
    return _ok(emis)


@api_bp.route('/emis', methods=['POST'])
@login_required
def add_emi_api():
    success, message, emi = get_engine().add_emi(_user_id(), today=_client_today(), **_emi_args(_json_body()))
    if not success:
        return _fail(message)
    return _ok(emi, message, 201)


@api_bp.route('/emis/<int:emi_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def manage_emi_api(emi_id):
    engine = get_engine()
    if request.method == 'GET':
        emi = engine.get_emi(_user_id(), emi_id, today=_client_today())
        if not emi:
            return _fail("EMI not found.")
        return _ok(emi)

    if request.method == 'PUT':
        data = _json_body()
        success, message, emi = engine.update_emi(
            _user_id(), emi_id, status=data.get('status'), today=_client_today(), **_emi_args(data)
        )
        if not success:
            return _fail(message)
        return _ok(emi, message)

    success, message = engine.delete_emi(_user_id(), emi_id)
    if not success:
        return _fail(message)
    return _ok(message=message)


@api_bp.route('/emis/<int:emi_id>/pay', methods=['POST'])
@login_required
def pay_emi_api(emi_id):
    data = _json_body()
    success, message, emi = get_engine().record_emi_payment(
        _user_id(), emi_id,
        amount=data.get('amount'),
        payment_date=data.get('paymentDate'),
        notes=data.get('notes', ''),
        today=_client_today(),
    )
    if not success:
        return _fail(message)
    return _ok(emi, message)


# =============================================================================
# PAYMENT ROUTES
# =============================================================================

def _payment_args(data):
    return dict(
        name=data.get('name'),
        emi_type=data.get('emiType'),
        category=data.get('category'),
        amount=data.get('amount'),
        emi_day=data.get('emiDay'),
        start_date=data.get('startDate'),
        end_date=data.get('endDate'),
        notes=data.get('notes', ''),
    )


@api_bp.route('/payments', methods=['GET'])
@login_required
def get_payments_api():
    payments = get_engine().get_payments(_user_id(), status=request.args.get('status'), today=_client_today())
    return _ok(payments)


@api_bp.route('/payments', methods=['POST'])
@login_required
def add_payment_api():
    success, message, payment = get_engine().add_payment(
        _user_id(), today=_client_today(), **_payment_args(_json_body())
    )
    if not success:
        return _fail(message)
    return _ok(payment, message, 201)


@api_bp.route('/payments/<int:payment_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def manage_payment_api(payment_id):
    engine = get_engine()
    if request.method == 'GET':
        payment = engine.get_payment(_user_id(), payment_id, today=_client_today())
        if not payment:
            return _fail("Payment not found.")
        return _ok(payment)

    if request.method == 'PUT':
        data = _json_body()
        success, message, payment = engine.update_payment(
            _user_id(), payment_id, status=data.get('status'), today=_client_today(), **_payment_args(data)
        )
        if not success:
            return _fail(message)
        return _ok(payment, message)

    success, message = engine.delete_payment(_user_id(), payment_id)
    if not success:
        return _fail(message)
    return _ok(message=message)


@api_bp.route('/payments/forecast', methods=['GET'])
@login_required
def payment_forecast_api():
    forecast = get_engine().get_payment_forecast(
        _user_id(), months=request.args.get('months', 6), today=_client_today()
    )
    return _ok(forecast)


@api_bp.route('/payments/financial-freedom', methods=['GET'])
@login_required
def financial_freedom_api():
    result = get_engine().get_financial_freedom(_user_id(), today=_client_today())
    if result is None:
        return _fail("User not found.")
    return _ok(result)


@api_bp.route('/payments/transactions/upcoming', methods=['GET'])
@login_required
def upcoming_payment_transactions_api():
    transactions = get_engine().get_upcoming_payment_transactions(
        _user_id(), days=request.args.get('days', 30), today=_client_today()
    )
    return _ok(transactions)


@api_bp.route('/payments/<int:payment_id>/transactions', methods=['GET'])
@login_required
def payment_transactions_api(payment_id):
    engine = get_engine()
    if not engine.get_payment(_user_id(), payment_id):
        return _fail("Payment not found.")
    transactions = engine.get_payment_transactions(
        _user_id(), payment_id, status=request.args.get('status'), today=_client_today()
    )
    return _ok(transactions)


@api_bp.route('/payments/transactions/<int:transaction_id>', methods=['PUT'])
@login_required
def update_payment_transaction_api(transaction_id):
    success, message, transaction = get_engine().set_payment_transaction_status(
        _user_id(), transaction_id, _json_body().get('status'), today=_client_today()
    )
    if not success:
        return _fail(message)
    return _ok(transaction, message)


# =============================================================================
# HOUSE SAVINGS ROUTES
# =============================================================================

def _actor():
    return _user_id(), current_user.role


@api_bp.route('/house-savings', methods=['GET'])
@login_required
def get_house_savings_api():
    args = request.args
    success, message, result = get_engine().get_house_savings(
        *_actor(),
        target_user_id=args.get('userId'),
        from_date=args.get('fromDate'),
        to_date=args.get('toDate'),
        sort_by=args.get('sortBy', 'date'),
        sort_order=args.get('sortOrder', 'desc'),
        page=args.get('page', 1),
        limit=args.get('limit', 10),
    )
    if not success:
        return _fail(message)
    return jsonify({"success": True, **result})


@api_bp.route('/house-savings', methods=['POST'])
@login_required
def add_house_saving_api():
    data = _json_body()
    success, message, entry = get_engine().add_house_saving(
        *_actor(),
        entry_date=data.get('date'),
        amount=data.get('amount'),
        notes=data.get('notes', ''),
        target_user_id=data.get('userId'),
    )
    if not success:
        return _fail(message)
    return _ok(entry, message, 201)


@api_bp.route('/house-savings/<int:entry_id>', methods=['PUT', 'DELETE'])
@login_required
def manage_house_saving_api(entry_id):
    engine = get_engine()
    if request.method == 'PUT':
        data = _json_body()
        success, message, entry = engine.update_house_saving(
            *_actor(), entry_id, entry_date=data.get('date'), amount=data.get('amount'), notes=data.get('notes', '')
        )
        if not success:
            return _fail(message)
        return _ok(entry, message)

    success, message = engine.delete_house_saving(*_actor(), entry_id)
    if not success:
        return _fail(message)
    return _ok(message=message)


@api_bp.route('/house-savings/goal', methods=['GET', 'PUT'])
@login_required
def house_savings_goal_api():
    engine = get_engine()
    if request.method == 'GET':
        success, message, goal = engine.get_house_savings_goal(*_actor(), request.args.get('userId'))
    else:
        data = _json_body()
        success, message, goal = engine.set_house_savings_goal(*_actor(), data.get('goal'), data.get('userId'))
    if not success:
        return _fail(message)
    return _ok(message=message if request.method == 'PUT' else None, goal=goal)


@api_bp.route('/house-savings/summary', methods=['GET'])
@login_required
def house_savings_summary_api():
    args = request.args
    success, message, summary = get_engine().get_house_savings_summary(
        *_actor(), target_user_id=args.get('userId'), from_date=args.get('fromDate'),
        to_date=args.get('toDate'), today=_client_today()
    )
    if not success:
        return _fail(message)
    return _ok(summary)


@api_bp.route('/house-savings/export', methods=['GET'])
@login_required
def export_house_savings_api():
    args = request.args
    success, message, text = get_engine().export_house_savings_csv(
        *_actor(), target_user_id=args.get('userId'), from_date=args.get('fromDate'), to_date=args.get('toDate')
    )
    if not success:
        return _fail(message)
    filename = f"house-savings-{datetime.date.today().isoformat()}.csv"
    return Response(
        text,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


# =============================================================================
# CATEGORY & LEDGER ROUTES
# =============================================================================

@api_bp.route('/categories', methods=['GET'])
@login_required
def get_categories_api():
    return _ok(get_engine().get_categories(_user_id(), request.args.get('type')))


@api_bp.route('/categories', methods=['POST'])
@login_required
def add_category_api():
    data = _json_body()
    success, message, category = get_engine().add_category(
        _user_id(), data.get('name'), data.get('type'), data.get('color')
    )
    if not success:
        return _fail(message)
    return _ok(category, message, 201)


def _transaction_args(data):
    return dict(
        tx_type=data.get('type'),
        amount=data.get('amount'),
        description=data.get('description'),
        tx_date=data.get('date'),
        payment_method=data.get('paymentMethod'),
        category_id=data.get('categoryId', data.get('category')),
        notes=data.get('notes', ''),
    )


@api_bp.route('/transactions', methods=['GET'])
@login_required
def get_transactions_api():
    args = request.args
    items, pagination = get_engine().get_transactions(
        _user_id(),
        page=args.get('page', 1),
        limit=args.get('limit', 10),
        tx_type=args.get('type'),
        start_date=args.get('startDate'),
        end_date=args.get('endDate'),
    )
    return _ok(items, pagination=pagination)


@api_bp.route('/transactions', methods=['POST'])
@login_required
def add_transaction_api():
    success, message, transaction = get_engine().add_transaction(
        _user_id(), today=_client_today(), **_transaction_args(_json_body())
    )
    if not success:
        return _fail(message)
    return _ok(transaction, message, 201)


@api_bp.route('/transactions/<int:transaction_id>', methods=['PUT', 'DELETE'])
@login_required
def manage_transaction_api(transaction_id):
    engine = get_engine()
    if request.method == 'PUT':
        success, message, transaction = engine.update_transaction(
            _user_id(), transaction_id, today=_client_today(), **_transaction_args(_json_body())
        )
        if not success:
            return _fail(message)
        return _ok(transaction, message)

    success, message = engine.delete_transaction(_user_id(), transaction_id)
    if not success:
        return _fail(message)
    return _ok(message=message)


# =============================================================================
# REPORT ROUTES
# =============================================================================

@api_bp.route('/reports/dashboard', methods=['GET'])
@login_required
def dashboard_api():
    data = get_engine().get_dashboard_data(
        _user_id(), period=request.args.get('period', 'month'), today=_client_today()
    )
    return _ok(data)


@api_bp.route('/reports/spending', methods=['GET'])
@login_required
def spending_report_api():
    report = get_engine().get_spending_report(
        _user_id(), request.args.get('startDate'), request.args.get('endDate')
    )
    return _ok(report)


@api_bp.route('/reports/income', methods=['GET'])
@login_required
def income_report_api():
    report = get_engine().get_income_report(
        _user_id(), request.args.get('startDate'), request.args.get('endDate')
    )
    return _ok(report)


@api_bp.route('/reports/emi-summary', methods=['GET'])
@login_required
def emi_summary_api():
    return _ok(get_engine().get_emi_summary(_user_id(), today=_client_today()))


# =============================================================================
# USER ADMINISTRATION ROUTES
# =============================================================================

@api_bp.route('/users', methods=['GET'])
@role_required('admin', 'super_admin')
def list_users_api():
    return _ok(get_engine().list_users())


@api_bp.route('/users', methods=['POST'])
@role_required('admin', 'super_admin')
def create_user_api():
    data = _json_body()
    success, message, user = get_engine().create_user(
        current_user.role,
        name=data.get('name'),
        email=data.get('email'),
        password=data.get('password'),
        role=data.get('role', 'user'),
        currency=data.get('currency') or 'INR',
        monthly_income=data.get('monthlyIncome', 0),
    )
    if not success:
        return _fail(message)
    return _ok(user, message, 201)


@api_bp.route('/users/<int:user_id>', methods=['PUT', 'DELETE'])
@role_required('admin', 'super_admin')
def manage_user_api(user_id):
    engine = get_engine()
    if request.method == 'PUT':
        data = _json_body()
        success, message, user = engine.update_user(
            current_user.role, user_id,
            name=data.get('name'),
            email=data.get('email'),
            role=data.get('role'),
            password=data.get('password') or None,
        )
        if not success:
            return _fail(message)
        return _ok(user, message)

    success, message = engine.delete_user(_user_id(), current_user.role, user_id)
    if not success:
        return _fail(message)
    return _ok(message=message)


# =============================================================================
# ROLE PERMISSION ROUTES
# =============================================================================

@api_bp.route('/roles/permissions', methods=['GET'])
@role_required('admin', 'super_admin')
def role_permissions_api():
    return jsonify({
        "success": True,
        "permissions": get_engine().get_role_permissions(),
        "menuPaths": MENU_PATHS,
    })


@api_bp.route('/roles/permissions/bulk', methods=['PUT'])
@role_required('admin', 'super_admin')
def bulk_role_permissions_api():
    success, message = get_engine().set_role_permissions(_json_body().get('permissions'))
    if not success:
        return _fail(message)
    return jsonify({"success": True, "message": message, "permissions": get_engine().get_role_permissions()})


@api_bp.route('/roles/my-permissions', methods=['GET'])
@login_required
def my_permissions_api():
    return jsonify({"success": True, "paths": get_engine().get_allowed_paths(current_user.role)})


# =============================================================================
# HEALTH
# =============================================================================

@api_bp.route('/health', methods=['GET'])
def health_api():
    missing = verify_schema(current_app.config['DATABASE_PATH'])
    status_code = 200 if not missing else 503
    return jsonify({"status": "ok" if not missing else "degraded", "missingTables": missing}), status_code


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def _register_error_handlers(app):
    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if request.path.startswith('/api/'):
            return jsonify(success=False, message=e.description), e.code
        return e

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify(success=False, message="Internal server error."), 500


def create_app(overrides=None):
    """
    Build the Flask application.

    Args:
        overrides (dict, optional): Config values applied after Config
                                    (tests pass DATABASE_PATH, BCRYPT_ROUNDS...)
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    app.json = CustomJSONProvider(app)

    origins = app.config['CORS_ORIGINS']
    if origins != '*':
        origins = [origin.strip() for origin in origins.split(',') if origin.strip()]
    CORS(app, supports_credentials=True, origins=origins)

    db_path = app.config['DATABASE_PATH']
    if not create_database(db_path):
        raise RuntimeError(f"Could not create database at {db_path}")
    applied = run_all_pending(db_path)
    if applied:
        logger.info("Applied %d migration(s)", applied)

    app.extensions['finance_engine'] = FinanceEngine(db_path, app.config['BCRYPT_ROUNDS'])

    login_manager.init_app(app)
    app.register_blueprint(api_bp)
    _register_error_handlers(app)

    from .cli import register_commands
    register_commands(app)

    return app
