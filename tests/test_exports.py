from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest
from openpyxl import load_workbook

from loanspur.models import Loan
from loanspur.utils.accounting_helpers import create_journal_entry, get_trial_balance
from loanspur.utils.excel_export import export_loan_portfolio_excel, export_to_csv, export_trial_balance_excel

pytestmark = pytest.mark.django_db

XLSX = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def workbook(response):
    return load_workbook(BytesIO(response.content))


def test_trial_balance_workbook(tenant, tenant_admin, accounts):
    create_journal_entry(
        tenant, date(2026, 3, 31), 'Capital injection',
        [
            {'account': accounts['1010'], 'debit': Decimal('50000'), 'credit': 0},
            {'account': accounts['3000'], 'debit': 0, 'credit': Decimal('50000')},
        ],
        created_by=tenant_admin,
    )
    report = get_trial_balance(tenant, date_to=date(2026, 3, 31))

    response = export_trial_balance_excel(report)

    assert response['Content-Type'] == XLSX
    assert response['Content-Disposition'] == 'attachment; filename="trial_balance_20260331.xlsx"'
    sheet = workbook(response)['Trial Balance']
    assert sheet['A1'].value == 'TRIAL BALANCE'
    assert sheet['A3'].value == 'Status: BALANCED'
    assert [cell.value for cell in sheet[4]] == [
        'GL Code', 'Account Name', 'Account Type', 'Debit (KES)', 'Credit (KES)',
    ]
    totals = [cell.value for cell in sheet[sheet.max_row]]
    assert totals[1] == 'TOTAL'
    assert totals[3] == totals[4] == 50000


def test_loan_portfolio_workbook(active_loan):
    response = export_loan_portfolio_excel(Loan.objects.all(), currency='KES')

    book = workbook(response)
    portfolio = book['Portfolio']
    assert portfolio['A1'].value == 'LOAN PORTFOLIO'
    assert portfolio['A4'].value == active_loan.loan_number
    assert portfolio['H4'].value == 10000

    summary = [[cell.value for cell in row] for row in book['Summary'].iter_rows()]
    assert summary[0] == ['Status', 'Loans', 'Principal', 'Outstanding']
    assert summary[1][:3] == ['Active', 1, 10000]


def test_empty_portfolio(db):
    response = export_loan_portfolio_excel(Loan.objects.none())

    assert workbook(response)['Summary'].max_row == 1


def test_csv_export():
    response = export_to_csv(
        [{'code': '1010', 'name': 'Cash'}, {'code': '2000', 'name': 'Savings'}],
        ['code', 'name'],
        filename='accounts.csv',
    )

    assert response['Content-Type'] == 'text/csv'
    assert response.content.decode().splitlines() == ['code,name', '1010,Cash', '2000,Savings']
