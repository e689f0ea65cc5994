from functools import partial
import pandas as pd
from sklearn.linear_model import LinearRegression
from models import db, Transaction, YearHistory
from schemas import format_amount

# Monthly totals come from the year_history rollup; only the category
# breakdown needs the raw transactions.

def _monthly_df(user_id):
    rows = db.session.query(YearHistory).filter(YearHistory.user_id == user_id).order_by(
        YearHistory.year, YearHistory.month
    ).all()
    if not rows:
        return pd.DataFrame(columns=['ym', 'income', 'expense'])
    df = pd.DataFrame([{
        'ym': f'{r.year:04d}-{r.month:02d}',
        'income': float(r.income),
        'expense': float(r.expense)
    } for r in rows])
    return df

def _category_expenses(user_id):
    rows = db.session.query(Transaction.category, Transaction.amount).filter(
        Transaction.user_id == user_id, Transaction.ttype == 'expense'
    ).all()
    if not rows:
        return pd.Series(dtype=float)
    df = pd.DataFrame([(r[0], float(r[1])) for r in rows], columns=['category', 'amount'])
    return df.groupby('category')['amount'].sum().sort_values(ascending=False)

def predict_next_month_expense(user_id):
    m = _monthly_df(user_id)
    m = m[m['expense'] > 0].reset_index(drop=True)
    if m.empty:
        return 0.0
    if len(m) < 2:
        # Not enough data to fit
        return float(m['expense'].iloc[-1])
    # Turn months into an integer index
    m['idx'] = range(1, len(m)+1)
    X = m[['idx']].values
    y = m['expense'].values
    model = LinearRegression().fit(X, y)
    next_idx = m['idx'].max() + 1
    pred = float(model.predict([[next_idx]])[0])
    return max(pred, 0.0)

def generate_recommendations(user_id, currency='USD'):
    monthly = _monthly_df(user_id)
    recs = []
    if monthly.empty:
        recs.append('Add at least 2 months of data to get personalized savings insights.')
        return recs
    fmt = partial(format_amount, currency=currency)
    total_income = monthly['income'].sum()
    total_expense = monthly['expense'].sum()
    if total_income > 0:
        savings_rate = max((total_income - total_expense) / total_income, 0)
        recs.append(f'Your overall savings rate is {savings_rate*100:.1f}%. Aim for 20%+ as a baseline.')
    else:
        recs.append('Add income entries to compute your savings rate.')
    # Top 3 spend categories
    for c, v in _category_expenses(user_id).head(3).items():
        recs.append(f'High spend in "{c}" category: {fmt(v)}. Consider setting a monthly cap or finding cheaper alternatives.')
    # Volatility check: last month against the average of the earlier ones
    expenses = monthly[monthly['expense'] > 0]['expense']
    if len(expenses) >= 2:
        last = expenses.iloc[-1]
        prev_avg = expenses.iloc[:-1].mean()
        if last > 1.2 * prev_avg:
            recs.append("Last month's expenses exceeded your previous average by 20%+. Review discretionary categories.")
    pred = predict_next_month_expense(user_id)
    if total_income > 0:
        target_save = max(total_income*0.2, 0)
        recs.append(f'Predicted next month expense: {fmt(pred)}. Set a savings target of at least {fmt(target_save)}.')
    else:
        recs.append(f'Predicted next month expense: {fmt(pred)}. Add income to compute a savings target.')
    return recs
