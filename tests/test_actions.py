import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import event

from base import AppTestCase
from models import db, Category, MonthHistory, Transaction, UserSettings, YearHistory
from ml.recommender import predict_next_month_expense
import actions
import stats


class CreateTransactionTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self._add_category('Food', 'expense', '🍔')
        self._add_category('Salary', 'income', '💰')

    def _day_row(self, d, user_id=None):
        return db.session.get(MonthHistory, (user_id or self.user_id, d.day, d.month, d.year))

    def _month_row(self, d, user_id=None):
        return db.session.get(YearHistory, (user_id or self.user_id, d.month, d.year))

    def test_expense_increments_only_expense(self):
        d = date(2024, 3, 15)
        self._add_tx(42.5, 'expense', d, 'Food', 'Lunch')

        day = self._day_row(d)
        self.assertEqual(day.expense, Decimal('42.5'))
        self.assertEqual(day.income, Decimal('0'))
        month = self._month_row(d)
        self.assertEqual(month.expense, Decimal('42.5'))
        self.assertEqual(month.income, Decimal('0'))

    def test_transaction_copies_category_icon(self):
        tx = self._add_tx(10, 'expense', date(2024, 3, 15), 'Food')
        stored = db.session.get(Transaction, tx.id)
        self.assertEqual(stored.category, 'Food')
        self.assertEqual(stored.category_icon, '🍔')
        self.assertEqual(stored.description, '')
        self.assertEqual(stored.ttype, 'expense')
        self.assertEqual(stored.date, date(2024, 3, 15))

    def test_same_day_accumulates(self):
        d = date(2024, 3, 15)
        self._add_tx(10, 'expense', d, 'Food')
        self._add_tx(15.25, 'expense', d, 'Food')
        self._add_tx(1000, 'income', d, 'Salary')

        day = self._day_row(d)
        self.assertEqual(day.expense, Decimal('25.25'))
        self.assertEqual(day.income, Decimal('1000'))
        month = self._month_row(d)
        self.assertEqual(month.expense, Decimal('25.25'))
        self.assertEqual(month.income, Decimal('1000'))
        self.assertEqual(MonthHistory.query.count(), 1)
        self.assertEqual(YearHistory.query.count(), 1)

    def test_different_days_share_month_row(self):
        self._add_tx(10, 'expense', date(2024, 3, 1), 'Food')
        self._add_tx(20, 'expense', date(2024, 3, 31), 'Food')
        self._add_tx(5, 'expense', date(2024, 4, 1), 'Food')

        self.assertEqual(MonthHistory.query.count(), 3)
        self.assertEqual(self._month_row(date(2024, 3, 1)).expense, Decimal('30'))
        self.assertEqual(self._month_row(date(2024, 4, 1)).expense, Decimal('5'))

    def test_rollups_match_transaction_sums(self):
        d = date(2024, 5, 2)
        for amount in (3.5, 7.25, 11):
            self._add_tx(amount, 'expense', d, 'Food')
        total = sum(t.amount for t in Transaction.query.filter_by(user_id=self.user_id, ttype='expense'))
        self.assertEqual(self._day_row(d).expense, total)
        self.assertEqual(self._month_row(d).expense, total)

    def test_users_have_separate_rollups(self):
        other = self._add_user('bob@example.com')
        self._add_category('Food', 'expense', '🥗', user_id=other)
        d = date(2024, 3, 15)
        self._add_tx(10, 'expense', d, 'Food')
        self._add_tx(99, 'expense', d, 'Food', user_id=other)

        self.assertEqual(self._day_row(d).expense, Decimal('10'))
        self.assertEqual(self._day_row(d, other).expense, Decimal('99'))

    def test_unknown_category_writes_nothing(self):
        with self.assertRaises(actions.CategoryNotFound) as cm:
            self._add_tx(10, 'expense', date(2024, 3, 15), 'Travel')
        self.assertEqual(str(cm.exception), 'Category not found')
        self.assertEqual(Transaction.query.count(), 0)
        self.assertEqual(MonthHistory.query.count(), 0)
        self.assertEqual(YearHistory.query.count(), 0)

    def test_other_users_category_is_not_found(self):
        other = self._add_user('bob@example.com')
        self._add_category('Travel', 'expense', user_id=other)
        with self.assertRaises(actions.CategoryNotFound):
            self._add_tx(10, 'expense', date(2024, 3, 15), 'Travel')

    def test_invalid_payload_rejected_before_database(self):
        statements = []

        def count(*args):
            statements.append(args[2])

        event.listen(db.engine, 'before_cursor_execute', count)
        try:
            for bad in (
                {'amount': 0, 'type': 'expense', 'date': '2024-03-15', 'category': 'Food'},
                {'amount': -5, 'type': 'expense', 'date': '2024-03-15', 'category': 'Food'},
                {'amount': 5, 'type': 'transfer', 'date': '2024-03-15', 'category': 'Food'},
                {'amount': 5, 'type': 'expense', 'date': 'yesterday', 'category': 'Food'},
                {'amount': 5, 'type': 'expense', 'date': '2024-03-15'},
            ):
                with self.assertRaises(actions.ValidationFailed):
                    actions.create_transaction(self.user_id, bad)
        finally:
            event.remove(db.engine, 'before_cursor_execute', count)
        self.assertEqual(statements, [])

    def test_validation_message_is_kept(self):
        with self.assertRaises(actions.ValidationFailed) as cm:
            actions.create_transaction(self.user_id, {
                'amount': 0, 'type': 'expense', 'date': '2024-03-15', 'category': 'Food'
            })
        self.assertIn('amount', str(cm.exception))
        self.assertEqual(cm.exception.status_code, 400)

    def test_amount_string_is_coerced(self):
        tx = actions.create_transaction(self.user_id, {
            'amount': '12.40', 'type': 'expense', 'date': '2024-03-15', 'category': 'Food'
        })
        self.assertEqual(tx.amount, Decimal('12.4'))

    def test_non_finite_amounts_rejected(self):
        for amount in ('inf', '-inf', 'Infinity', 'nan', float('inf'), float('nan')):
            with self.assertRaises(actions.ValidationFailed):
                actions.create_transaction(self.user_id, {
                    'amount': amount, 'type': 'expense', 'date': '2024-03-15', 'category': 'Food'
                })
        self.assertEqual(Transaction.query.count(), 0)
        self.assertEqual(MonthHistory.query.count(), 0)

    def test_sub_cent_amount_rejected(self):
        with self.assertRaises(actions.ValidationFailed):
            actions.create_transaction(self.user_id, {
                'amount': '1.005', 'type': 'expense', 'date': '2024-03-15', 'category': 'Food'
            })

    def test_date_outside_year_range_rejected(self):
        for bad_date in ('1899-12-31', '2101-01-01'):
            with self.assertRaises(actions.ValidationFailed):
                actions.create_transaction(self.user_id, {
                    'amount': 5, 'type': 'expense', 'date': bad_date, 'category': 'Food'
                })

    def test_non_mapping_payload_rejected(self):
        for bad in ([1, 2], 'amount=5', 42):
            with self.assertRaises(actions.ValidationFailed):
                actions.create_transaction(self.user_id, bad)

    def test_failed_rollup_write_rolls_back_everything(self):
        d = date(2024, 3, 15)
        self._add_tx(10, 'expense', d, 'Food')
        real_upsert = actions._history_upsert

        def failing(model, key, income, expense):
            if model is YearHistory:
                raise RuntimeError('disk full')
            return real_upsert(model, key, income, expense)

        with patch.object(actions, '_history_upsert', side_effect=failing):
            with self.assertRaises(RuntimeError):
                self._add_tx(50, 'expense', d, 'Food')

        self.assertEqual(Transaction.query.count(), 1)
        self.assertEqual(self._day_row(d).expense, Decimal('10'))
        self.assertEqual(self._month_row(d).expense, Decimal('10'))


class DeleteTransactionTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self._add_category('Food', 'expense')
        self._add_category('Salary', 'income')

    def test_delete_reverts_rollups(self):
        d = date(2024, 3, 15)
        self._add_tx(10, 'expense', d, 'Food')
        tx = self._add_tx(4, 'expense', d, 'Food')
        income = self._add_tx(100, 'income', d, 'Salary')

        actions.delete_transaction(self.user_id, tx.id)
        actions.delete_transaction(self.user_id, income.id)

        day = db.session.get(MonthHistory, (self.user_id, 15, 3, 2024))
        self.assertEqual(day.expense, Decimal('10'))
        self.assertEqual(day.income, Decimal('0'))
        month = db.session.get(YearHistory, (self.user_id, 3, 2024))
        self.assertEqual(month.expense, Decimal('10'))
        self.assertEqual(Transaction.query.count(), 1)

    def test_deleting_everything_leaves_exact_zero(self):
        d = date(2024, 3, 15)
        first = self._add_tx(0.1, 'expense', d, 'Food')
        second = self._add_tx(0.2, 'expense', d, 'Food')
        self._add_tx(100, 'expense', date(2024, 5, 1), 'Food')

        actions.delete_transaction(self.user_id, first.id)
        actions.delete_transaction(self.user_id, second.id)

        self.assertEqual(db.session.get(MonthHistory, (self.user_id, 15, 3, 2024)).expense, Decimal('0'))
        self.assertEqual(db.session.get(YearHistory, (self.user_id, 3, 2024)).expense, Decimal('0'))
        march = stats.get_history_data(self.user_id, 'year', 2024)[2]
        self.assertEqual(march['expense'], 0.0)
        # the emptied month must not count as a month of spending
        self.assertEqual(predict_next_month_expense(self.user_id), 100.0)

    def test_cannot_delete_other_users_transaction(self):
        tx = self._add_tx(10, 'expense', date(2024, 3, 15), 'Food')
        other = self._add_user('bob@example.com')
        with self.assertRaises(actions.TransactionNotFound):
            actions.delete_transaction(other, tx.id)
        self.assertEqual(Transaction.query.count(), 1)

    def test_unknown_id(self):
        with self.assertRaises(actions.TransactionNotFound):
            actions.delete_transaction(self.user_id, 12345)


class CategoryTests(AppTestCase):
    def test_create_category(self):
        cat = self._add_category('Groceries', 'expense', '🛒')
        self.assertEqual(cat.ttype, 'expense')
        self.assertEqual(Category.query.filter_by(user_id=self.user_id).count(), 1)

    def test_duplicate_name_rejected(self):
        self._add_category('Groceries', 'expense')
        with self.assertRaises(actions.CategoryExists):
            self._add_category('Groceries', 'income')

    def test_duplicate_created_concurrently_reports_exists(self):
        self._add_category('Groceries', 'expense')
        # the lookup misses the row another request just committed
        with patch.object(Category, 'query') as query:
            query.filter_by.return_value.first.return_value = None
            with self.assertRaises(actions.CategoryExists):
                self._add_category('Groceries', 'expense')
        self.assertEqual(Category.query.filter_by(user_id=self.user_id).count(), 1)

    def test_same_name_for_other_user(self):
        other = self._add_user('bob@example.com')
        self._add_category('Groceries')
        self._add_category('Groceries', user_id=other)
        self.assertEqual(Category.query.count(), 2)

    def test_name_length_limits(self):
        with self.assertRaises(actions.ValidationFailed):
            self._add_category('ab')
        with self.assertRaises(actions.ValidationFailed):
            self._add_category('x' * 21)

    def test_delete_category_keeps_transactions(self):
        self._add_category('Food', 'expense', '🍔')
        self._add_tx(10, 'expense', date(2024, 3, 15), 'Food')
        actions.delete_category(self.user_id, {'name': 'Food', 'type': 'expense'})

        self.assertEqual(Category.query.count(), 0)
        tx = Transaction.query.one()
        self.assertEqual(tx.category, 'Food')
        self.assertEqual(tx.category_icon, '🍔')

    def test_delete_requires_matching_type(self):
        self._add_category('Food', 'expense')
        with self.assertRaises(actions.CategoryNotFound):
            actions.delete_category(self.user_id, {'name': 'Food', 'type': 'income'})


class UserSettingsTests(AppTestCase):
    def test_settings_created_on_first_access(self):
        user_id = self._add_user('bob@example.com')
        db.session.delete(db.session.get(UserSettings, user_id))
        db.session.commit()

        settings = actions.get_user_settings(user_id)
        self.assertEqual(settings.currency, 'USD')

    def test_update_currency(self):
        actions.update_user_currency(self.user_id, 'EUR')
        self.assertEqual(db.session.get(UserSettings, self.user_id).currency, 'EUR')

    def test_unknown_currency_rejected(self):
        with self.assertRaises(actions.ValidationFailed):
            actions.update_user_currency(self.user_id, 'XYZ')
        self.assertEqual(db.session.get(UserSettings, self.user_id).currency, 'USD')


if __name__ == '__main__':
    unittest.main()
