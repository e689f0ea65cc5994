"""Write-side operations of the dashboard.

Every function here takes the id of the signed-in user and a raw payload,
validates it, and commits its changes as a single database transaction.
Failures are raised as ``ActionError`` subclasses; the caller decides how to
present them.
"""
import logging
from collections.abc import Mapping
from decimal import Decimal

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.dialects import mysql, postgresql, sqlite

from models import db, Category, MonthHistory, Transaction, UserSettings, YearHistory
from schemas import (
    CreateCategorySchema,
    CreateTransactionSchema,
    DEFAULT_CURRENCY,
    DeleteCategorySchema,
    UpdateUserCurrencySchema,
)

logger = logging.getLogger(__name__)


class ActionError(Exception):
    status_code = 400


class ValidationFailed(ActionError):
    pass


class CategoryNotFound(ActionError):
    status_code = 404


class CategoryExists(ActionError):
    status_code = 409


class TransactionNotFound(ActionError):
    status_code = 404


def validate(schema, data, **extra):
    """Parse ``data`` with a pydantic schema, raising ValidationFailed with its message."""
    if data is not None and not isinstance(data, Mapping):
        raise ValidationFailed(f'{schema.__name__} expects an object, got {type(data).__name__}')
    try:
        return schema.model_validate({**(data or {}), **extra})
    except ValidationError as exc:
        logger.warning('Rejected %s payload: %s', schema.__name__, exc)
        raise ValidationFailed(str(exc)) from exc


# ---------------------- Rollups ----------------------
def _history_upsert(model, key, income, expense):
    """Build an INSERT that adds income/expense onto the rollup row for ``key``."""
    dialect = db.session.get_bind().dialect.name
    values = dict(key, income=income, expense=expense)
    table = model.__table__
    if dialect in ('sqlite', 'postgresql'):
        insert = sqlite.insert if dialect == 'sqlite' else postgresql.insert
        stmt = insert(table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=list(key),
            set_={
                'income': table.c.income + stmt.excluded.income,
                'expense': table.c.expense + stmt.excluded.expense,
            },
        )
    if dialect in ('mysql', 'mariadb'):
        stmt = mysql.insert(table).values(**values)
        return stmt.on_duplicate_key_update(
            income=table.c.income + stmt.inserted.income,
            expense=table.c.expense + stmt.inserted.expense,
        )
    raise RuntimeError(f'No upsert support for database dialect {dialect!r}')


def _history_keys(user_id, tdate):
    day_key = {'user_id': user_id, 'day': tdate.day, 'month': tdate.month, 'year': tdate.year}
    month_key = {'user_id': user_id, 'month': tdate.month, 'year': tdate.year}
    return day_key, month_key


def _split_amount(amount, ttype):
    """Return the (income, expense) increments for an amount of the given type."""
    zero = Decimal('0')
    return (amount if ttype == 'income' else zero, amount if ttype == 'expense' else zero)


# ---------------------- Transactions ----------------------
def create_transaction(user_id, form):
    data = validate(CreateTransactionSchema, form)

    category = Category.query.filter_by(user_id=user_id, name=data.category).first()
    if category is None:
        raise CategoryNotFound('Category not found')

    income, expense = _split_amount(data.amount, data.type)
    day_key, month_key = _history_keys(user_id, data.date)

    tx = Transaction(
        user_id=user_id,
        amount=data.amount,
        date=data.date,
        description=data.description or '',
        ttype=data.type,
        category=category.name,
        category_icon=category.icon,
    )
    try:
        db.session.add(tx)
        db.session.execute(_history_upsert(MonthHistory, day_key, income, expense))
        db.session.execute(_history_upsert(YearHistory, month_key, income, expense))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info('User %s recorded %s of %.2f in %r on %s', user_id, data.type, data.amount, category.name, data.date)
    return tx


def delete_transaction(user_id, txn_id):
    tx = Transaction.query.filter_by(id=txn_id, user_id=user_id).first()
    if tx is None:
        raise TransactionNotFound('Transaction not found')

    income, expense = _split_amount(tx.amount, tx.ttype)
    day_key, month_key = _history_keys(user_id, tx.date)
    try:
        for model, key in ((MonthHistory, day_key), (YearHistory, month_key)):
            db.session.execute(
                update(model)
                .filter_by(**key)
                .values(income=model.income - income, expense=model.expense - expense)
            )
        db.session.delete(tx)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info('User %s deleted transaction %s', user_id, txn_id)


# ---------------------- Categories ----------------------
def create_category(user_id, form):
    data = validate(CreateCategorySchema, form)
    if Category.query.filter_by(user_id=user_id, name=data.name).first():
        raise CategoryExists(f'Category {data.name} already exists')

    category = Category(user_id=user_id, name=data.name, icon=data.icon, ttype=data.type)
    db.session.add(category)
    try:
        db.session.commit()
    except IntegrityError as exc:
        # created by a concurrent request since the lookup above
        db.session.rollback()
        raise CategoryExists(f'Category {data.name} already exists') from exc
    logger.info('User %s created %s category %r', user_id, data.type, data.name)
    return category


def delete_category(user_id, form):
    data = validate(DeleteCategorySchema, form)
    category = Category.query.filter_by(user_id=user_id, name=data.name, ttype=data.type).first()
    if category is None:
        raise CategoryNotFound('Category not found')
    db.session.delete(category)
    db.session.commit()
    logger.info('User %s deleted category %r', user_id, data.name)


# ---------------------- User settings ----------------------
def get_user_settings(user_id):
    settings = db.session.get(UserSettings, user_id)
    if settings is None:
        settings = UserSettings(user_id=user_id, currency=DEFAULT_CURRENCY)
        db.session.add(settings)
        db.session.commit()
    return settings


def update_user_currency(user_id, currency):
    data = validate(UpdateUserCurrencySchema, {'currency': currency})
    settings = get_user_settings(user_id)
    settings.currency = data.currency
    db.session.commit()
    logger.info('User %s switched currency to %s', user_id, data.currency)
    return settings
