from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

TRANSACTION_TYPES = ('income', 'expense')


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    settings = db.relationship('UserSettings', backref='user', uselist=False, lazy=True, cascade="all, delete-orphan")
    categories = db.relationship('Category', backref='user', lazy=True, cascade="all, delete-orphan")
    transactions = db.relationship('Transaction', backref='user', lazy=True, cascade="all, delete-orphan")


class UserSettings(db.Model):
    __tablename__ = 'user_settings'
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), primary_key=True)
    currency = db.Column(db.String(3), nullable=False, default='USD')


class Category(db.Model):
    __table_args__ = (db.UniqueConstraint('user_id', 'name', name='uq_category_user_name'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(20), nullable=False)
    icon = db.Column(db.String(20), nullable=False, default='')
    ttype = db.Column(db.String(20), nullable=False)  # 'income' or 'expense'
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class Transaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)  # always positive
    ttype = db.Column(db.String(20), nullable=False)  # 'income' or 'expense'
    category = db.Column(db.String(20), nullable=False)
    category_icon = db.Column(db.String(20), nullable=False, default='')
    description = db.Column(db.Text, nullable=False, default='')
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class MonthHistory(db.Model):
    """Per-day running totals; one row per (user, day, month, year).

    ``month`` is the calendar month, 1-12. Rollups exported by the earlier
    JavaScript dashboard number months 0-11 and need +1 when imported.
    """
    __tablename__ = 'month_history'

    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), primary_key=True)
    day = db.Column(db.Integer, primary_key=True)
    month = db.Column(db.Integer, primary_key=True)  # 1-12
    year = db.Column(db.Integer, primary_key=True)
    income = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    expense = db.Column(db.Numeric(12, 2), nullable=False, default=0)


class YearHistory(db.Model):
    """Per-month running totals; one row per (user, month, year). Months are 1-12, see MonthHistory."""
    __tablename__ = 'year_history'

    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), primary_key=True)
    month = db.Column(db.Integer, primary_key=True)  # 1-12
    year = db.Column(db.Integer, primary_key=True)
    income = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    expense = db.Column(db.Numeric(12, 2), nullable=False, default=0)
