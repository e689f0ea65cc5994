import calendar
from datetime import date

from sqlalchemy import func, case

from models import db, Category, MonthHistory, Transaction, YearHistory
from schemas import format_amount


def list_categories(user_id, ttype=None):
    q = Category.query.filter_by(user_id=user_id)
    if ttype in ('income', 'expense'):
        q = q.filter_by(ttype=ttype)
    return q.order_by(Category.name).all()


def get_balance_stats(user_id, from_date, to_date):
    totals = db.session.query(
        func.sum(case((Transaction.ttype == 'income', Transaction.amount), else_=0)).label('income'),
        func.sum(case((Transaction.ttype == 'expense', Transaction.amount), else_=0)).label('expense')
    ).filter(
        Transaction.user_id == user_id,
        Transaction.date.between(from_date, to_date),
    ).first()
    income = float(totals.income or 0)
    expense = float(totals.expense or 0)
    return {'income': income, 'expense': expense, 'balance': income - expense}


def get_categories_stats(user_id, from_date, to_date):
    total = func.sum(Transaction.amount).label('amount')
    rows = db.session.query(
        Transaction.ttype, Transaction.category, Transaction.category_icon, total
    ).filter(
        Transaction.user_id == user_id,
        Transaction.date.between(from_date, to_date),
    ).group_by(
        Transaction.ttype, Transaction.category, Transaction.category_icon
    ).order_by(total.desc()).all()
    return [{
        'type': r[0],
        'category': r[1],
        'category_icon': r[2],
        'amount': float(r[3] or 0),
    } for r in rows]


def get_transactions_history(user_id, from_date, to_date, currency):
    txs = Transaction.query.filter(
        Transaction.user_id == user_id,
        Transaction.date.between(from_date, to_date),
    ).order_by(Transaction.date.desc(), Transaction.id.desc()).all()
    return [{
        'id': tx.id,
        'date': tx.date.isoformat(),
        'amount': float(tx.amount),
        'formatted_amount': format_amount(tx.amount, currency),
        'type': tx.ttype,
        'category': tx.category,
        'category_icon': tx.category_icon,
        'description': tx.description,
    } for tx in txs]


def get_history_periods(user_id):
    rows = db.session.query(YearHistory.year).filter(
        YearHistory.user_id == user_id
    ).distinct().order_by(YearHistory.year).all()
    return [r[0] for r in rows] or [date.today().year]


def get_history_data(user_id, timeframe, year, month=None):
    """Chart rows for a year (one per month) or a month (one per day), zero-filled."""
    if timeframe == 'year':
        rows = db.session.query(
            YearHistory.month, func.sum(YearHistory.income), func.sum(YearHistory.expense)
        ).filter(
            YearHistory.user_id == user_id, YearHistory.year == year
        ).group_by(YearHistory.month).all()
        found = {r[0]: (float(r[1] or 0), float(r[2] or 0)) for r in rows}
        return [{
            'year': year,
            'month': m,
            'income': found.get(m, (0.0, 0.0))[0],
            'expense': found.get(m, (0.0, 0.0))[1],
        } for m in range(1, 13)]

    rows = db.session.query(
        MonthHistory.day, func.sum(MonthHistory.income), func.sum(MonthHistory.expense)
    ).filter(
        MonthHistory.user_id == user_id, MonthHistory.year == year, MonthHistory.month == month
    ).group_by(MonthHistory.day).all()
    found = {r[0]: (float(r[1] or 0), float(r[2] or 0)) for r in rows}
    days_in_month = calendar.monthrange(year, month)[1]
    return [{
        'year': year,
        'month': month,
        'day': d,
        'income': found.get(d, (0.0, 0.0))[0],
        'expense': found.get(d, (0.0, 0.0))[1],
    } for d in range(1, days_in_month + 1)]
