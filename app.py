import logging
import os
from functools import wraps
from flask import Blueprint, Flask, request, redirect, url_for, session, jsonify, current_app
from werkzeug.security import generate_password_hash, check_password_hash
from models import db, User, UserSettings
from schemas import CURRENCIES, DEFAULT_CURRENCY, HistoryDataQuerySchema, OverviewQuerySchema
from ml.recommender import generate_recommendations, predict_next_month_expense
import actions
import stats

logger = logging.getLogger(__name__)

bp = Blueprint('dashboard', __name__)


def create_app(test_config=None):
    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///finance.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-me')
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')
    app.config['MAX_DATE_RANGE_DAYS'] = int(os.environ.get('MAX_DATE_RANGE_DAYS', 90))
    if test_config:
        app.config.update(test_config)

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=app.config['LOG_LEVEL'],
            format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        )

    db.init_app(app)
    app.register_blueprint(bp)
    app.register_error_handler(actions.ActionError, _action_error)
    with app.app_context():
        db.create_all()
    return app


def _action_error(exc):
    return jsonify({'success': False, 'message': str(exc)}), exc.status_code


# ---------------------- Auth Helpers ----------------------
def current_user():
    uid = session.get('user_id')
    if uid:
        return db.session.get(User, uid)
    return None

def login_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        if not current_user():
            return redirect(url_for('dashboard.login', next=request.path))
        return view_func(*args, **kwargs)
    return wrapped

def _payload():
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        raise actions.ValidationFailed('Request body must be a JSON object.')
    return data

def _field(data, key):
    return str(data.get(key) or '')

def _overview_range():
    q = actions.validate(
        OverviewQuerySchema, request.args.to_dict(), max_days=current_app.config['MAX_DATE_RANGE_DAYS']
    )
    return q.from_date, q.to_date

# ---------------------- Routes: Auth ----------------------
@bp.route('/register', methods=['POST'])
def register():
    data = _payload()
    name = _field(data, 'name').strip()
    email = _field(data, 'email').lower().strip()
    password = _field(data, 'password')
    if not name or not email or not password:
        return jsonify({'success': False, 'message': 'All fields are required.'}), 400
    if User.query.filter_by(email=email).first():
        return jsonify({'success': False, 'message': 'Email already registered.'}), 409
    user = User(name=name, email=email, password_hash=generate_password_hash(password))
    user.settings = UserSettings(currency=DEFAULT_CURRENCY)
    db.session.add(user)
    db.session.commit()
    logger.info('Registered user %s', user.id)
    return jsonify({'success': True, 'message': 'Registration successful. Please log in.'}), 201

@bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'GET':
        return jsonify({'success': False, 'message': 'Please log in.'}), 401
    data = _payload()
    email = _field(data, 'email').lower().strip()
    password = _field(data, 'password')
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        logger.warning('Failed login for %s', email)
        return jsonify({'success': False, 'message': 'Invalid credentials.'}), 401
    session['user_id'] = user.id
    return jsonify({'success': True, 'message': 'Welcome back!', 'next': request.args.get('next')})

@bp.route('/logout')
def logout():
    session.clear()
    return jsonify({'success': True, 'message': 'Logged out.'})

# ---------------------- Routes: Settings & Categories ----------------------
@bp.route('/api/user-settings', methods=['GET', 'POST'])
@login_required
def api_user_settings():
    user = current_user()
    if request.method == 'POST':
        settings = actions.update_user_currency(user.id, _payload().get('currency'))
    else:
        settings = actions.get_user_settings(user.id)
    symbol, label, _ = CURRENCIES[settings.currency]
    return jsonify({'currency': settings.currency, 'symbol': symbol, 'label': label})

@bp.route('/api/categories', methods=['GET', 'POST'])
@login_required
def api_categories():
    user = current_user()
    if request.method == 'POST':
        category = actions.create_category(user.id, _payload())
        return jsonify({'success': True, 'message': f'Category {category.name} created successfully.', 'id': category.id}), 201
    return jsonify([{
        'id': c.id,
        'name': c.name,
        'icon': c.icon,
        'type': c.ttype
    } for c in stats.list_categories(user.id, request.args.get('type'))])

@bp.route('/api/categories/delete', methods=['POST'])
@login_required
def api_delete_category():
    actions.delete_category(current_user().id, _payload())
    return jsonify({'success': True, 'message': 'Category deleted.'})

# ---------------------- Routes: Transactions ----------------------
@bp.route('/api/transactions', methods=['POST'])
@login_required
def api_create_transaction():
    tx = actions.create_transaction(current_user().id, _payload())
    return jsonify({'success': True, 'message': 'Transaction created successfully.', 'id': tx.id}), 201

@bp.route('/api/transactions/delete/<int:txn_id>', methods=['POST'])
@login_required
def api_delete_transaction(txn_id):
    actions.delete_transaction(current_user().id, txn_id)
    return jsonify({'success': True, 'message': 'Transaction deleted.'})

@bp.route('/api/transactions-history')
@login_required
def api_transactions_history():
    user = current_user()
    from_date, to_date = _overview_range()
    currency = actions.get_user_settings(user.id).currency
    return jsonify(stats.get_transactions_history(user.id, from_date, to_date, currency))

# ---------------------- Routes: Stats ----------------------
@bp.route('/api/stats/balance')
@login_required
def api_balance_stats():
    from_date, to_date = _overview_range()
    return jsonify(stats.get_balance_stats(current_user().id, from_date, to_date))

@bp.route('/api/stats/categories')
@login_required
def api_categories_stats():
    from_date, to_date = _overview_range()
    return jsonify(stats.get_categories_stats(current_user().id, from_date, to_date))

@bp.route('/api/history-periods')
@login_required
def api_history_periods():
    return jsonify(stats.get_history_periods(current_user().id))

@bp.route('/api/history-data')
@login_required
def api_history_data():
    q = actions.validate(HistoryDataQuerySchema, request.args.to_dict())
    return jsonify(stats.get_history_data(current_user().id, q.timeframe, q.year, q.month))

@bp.route('/api/recommendations')
@login_required
def api_recommendations():
    user = current_user()
    currency = actions.get_user_settings(user.id).currency
    recs = generate_recommendations(user.id, currency)
    pred = predict_next_month_expense(user.id)
    return jsonify({'recommendations': recs, 'next_month_expense_prediction': pred})


# ---------------------- Run App ----------------------
if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), debug=True)
