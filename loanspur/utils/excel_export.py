"""
Excel/CSV Export Utilities using Pandas
========================================

Spreadsheet exports for accounting reports and the loan portfolio
"""

from django.http import HttpResponse
from django.utils import timezone
import pandas as pd
from io import BytesIO

from openpyxl.styles import Font, PatternFill, Alignment

HEADER_COLOR = '0F766E'
TOTALS_COLOR = 'CCFBF1'


def create_excel_response(filename='report.xlsx'):
    """Create an HTTP response for Excel file download"""
    response = HttpResponse(
        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


def create_csv_response(filename='report.csv'):
    """Create an HTTP response for CSV file download"""
    response = HttpResponse(content_type='text/csv')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


def _style_header(worksheet, columns, row=1):
    header_fill = PatternFill(start_color=HEADER_COLOR, end_color=HEADER_COLOR, fill_type='solid')
    header_font = Font(bold=True, color='FFFFFF', size=11)
    for col_num in range(1, columns + 1):
        cell = worksheet.cell(row=row, column=col_num)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal='center', vertical='center')


def _add_title(worksheet, last_column, lines):
    """Insert title lines above the table, first line as the heading"""
    worksheet.insert_rows(1, len(lines))
    for row, text in enumerate(lines, 1):
        worksheet.merge_cells(f'A{row}:{last_column}{row}')
        cell = worksheet[f'A{row}']
        cell.value = text
        cell.alignment = Alignment(horizontal='center')
        if row == 1:
            cell.font = Font(bold=True, size=16, color=HEADER_COLOR)


def _period_label(date_from, date_to):
    start = date_from.strftime('%B %d, %Y') if date_from else 'inception'
    end = (date_to or timezone.localdate()).strftime('%B %d, %Y')
    return f'Period: {start} to {end}'


def _finish(output, writer, filename):
    writer.close()
    output.seek(0)
    response = create_excel_response(filename)
    response.write(output.read())
    return response


def export_trial_balance_excel(report_data, currency='KES'):
    """Export Trial Balance to Excel"""
    output = BytesIO()
    writer = pd.ExcelWriter(output, engine='openpyxl')

    debit_column = f'Debit ({currency})'
    credit_column = f'Credit ({currency})'
    rows = [{
        'GL Code': item['account'].account_code,
        'Account Name': item['account'].account_name,
        'Account Type': item['account'].get_account_type_display(),
        debit_column: float(item['debit']),
        credit_column: float(item['credit']),
    } for item in report_data['trial_balance']]

    df = pd.DataFrame(rows, columns=['GL Code', 'Account Name', 'Account Type', debit_column, credit_column])
    totals_row = pd.DataFrame([{
        'GL Code': '',
        'Account Name': 'TOTAL',
        'Account Type': '',
        debit_column: float(report_data['total_debits']),
        credit_column: float(report_data['total_credits']),
    }])
    df = pd.concat([df, totals_row], ignore_index=True)
    df.to_excel(writer, sheet_name='Trial Balance', index=False)

    worksheet = writer.sheets['Trial Balance']
    _style_header(worksheet, len(df.columns))

    last_row = len(df) + 1
    totals_fill = PatternFill(start_color=TOTALS_COLOR, end_color=TOTALS_COLOR, fill_type='solid')
    for col_num in range(1, len(df.columns) + 1):
        cell = worksheet.cell(row=last_row, column=col_num)
        cell.fill = totals_fill
        cell.font = Font(bold=True, size=11)

    for row in range(2, last_row + 1):
        worksheet.cell(row=row, column=4).number_format = '#,##0.00'
        worksheet.cell(row=row, column=5).number_format = '#,##0.00'

    for column, width in zip('ABCDE', (12, 40, 20, 18, 18)):
        worksheet.column_dimensions[column].width = width

    status = 'BALANCED' if report_data['is_balanced'] else 'NOT BALANCED'
    _add_title(worksheet, 'E', [
        'TRIAL BALANCE',
        _period_label(report_data['date_from'], report_data['date_to']),
        f'Status: {status}',
    ])
    worksheet['A3'].font = Font(bold=True, color='059669' if report_data['is_balanced'] else 'DC2626')

    date_to = report_data['date_to'] or timezone.localdate()
    return _finish(output, writer, f'trial_balance_{date_to.strftime("%Y%m%d")}.xlsx')


def export_income_statement_excel(report_data, currency='KES'):
    """Export Income Statement to Excel"""
    output = BytesIO()
    writer = pd.ExcelWriter(output, engine='openpyxl')

    amount_column = f'Amount ({currency})'
    columns = ['GL Code', 'Account', amount_column]

    def section(items):
        return pd.DataFrame([{
            'GL Code': item['account'].account_code,
            'Account': item['account'].account_name,
            amount_column: float(item['amount']),
        } for item in items], columns=columns)

    section(report_data['income_items']).to_excel(writer, sheet_name='Income', index=False)
    section(report_data['expense_items']).to_excel(writer, sheet_name='Expenses', index=False)
    pd.DataFrame([
        {'Item': 'Total Income', amount_column: float(report_data['total_income'])},
        {'Item': 'Total Expenses', amount_column: float(report_data['total_expenses'])},
        {'Item': 'Net Profit/Loss', amount_column: float(report_data['net_profit'])},
    ]).to_excel(writer, sheet_name='Summary', index=False)

    for sheet_name, worksheet in writer.sheets.items():
        _style_header(worksheet, 3 if sheet_name != 'Summary' else 2)
        worksheet.column_dimensions['A'].width = 15
        worksheet.column_dimensions['B'].width = 40
        worksheet.column_dimensions['C'].width = 18

    filename = (
        f'income_statement_{report_data["date_from"].strftime("%Y%m%d")}_'
        f'{report_data["date_to"].strftime("%Y%m%d")}.xlsx'
    )
    return _finish(output, writer, filename)


def export_general_ledger_excel(report_data, currency='KES'):
    """Export one account's General Ledger to Excel"""
    output = BytesIO()
    writer = pd.ExcelWriter(output, engine='openpyxl')

    rows = [{
        'Date': entry['date'].strftime('%Y-%m-%d'),
        'Entry Number': entry['entry_number'],
        'Description': entry['description'],
        f'Debit ({currency})': float(entry['debit']),
        f'Credit ({currency})': float(entry['credit']),
        f'Balance ({currency})': float(entry['balance']),
    } for entry in report_data['entries']]

    df = pd.DataFrame(rows, columns=[
        'Date', 'Entry Number', 'Description',
        f'Debit ({currency})', f'Credit ({currency})', f'Balance ({currency})',
    ])
    df.to_excel(writer, sheet_name='General Ledger', index=False)

    worksheet = writer.sheets['General Ledger']
    _style_header(worksheet, len(df.columns))
    for column, width in zip('ABCDEF', (12, 20, 45, 16, 16, 16)):
        worksheet.column_dimensions[column].width = width

    account = report_data['account']
    _add_title(worksheet, 'F', [
        'GENERAL LEDGER',
        f'{account.account_code} - {account.account_name}',
        _period_label(report_data['date_from'], report_data['date_to']),
        f'Opening Balance: {currency} {report_data["opening_balance"]:,.2f} | '
        f'Closing Balance: {currency} {report_data["closing_balance"]:,.2f}',
    ])

    return _finish(output, writer, f'general_ledger_{account.account_code}.xlsx')


def export_loan_portfolio_excel(loans, currency='KES'):
    """
    Export the loan book to Excel

    One row per loan with its outstanding components, plus a summary sheet
    grouped by status.
    """
    output = BytesIO()
    writer = pd.ExcelWriter(output, engine='openpyxl')

    rows = [{
        'Loan Number': loan.loan_number,
        'Client': loan.client.get_full_name(),
        'Product': loan.product.name,
        'Office': loan.office.name if loan.office else 'N/A',
        'Status': loan.get_status_display(),
        'Disbursed': loan.disbursement_date.strftime('%Y-%m-%d') if loan.disbursement_date else '',
        'Maturity': loan.expected_maturity_date.strftime('%Y-%m-%d') if loan.expected_maturity_date else '',
        'Principal': float(loan.principal_amount),
        'Interest': float(loan.total_interest),
        'Amount Paid': float(loan.amount_paid),
        'Outstanding': float(loan.outstanding_balance),
    } for loan in loans]

    columns = [
        'Loan Number', 'Client', 'Product', 'Office', 'Status', 'Disbursed', 'Maturity',
        'Principal', 'Interest', 'Amount Paid', 'Outstanding',
    ]
    df = pd.DataFrame(rows, columns=columns)
    df.to_excel(writer, sheet_name='Portfolio', index=False)

    if df.empty:
        summary = pd.DataFrame(columns=['Status', 'Loans', 'Principal', 'Outstanding'])
    else:
        summary = df.groupby('Status').agg(
            Loans=('Loan Number', 'count'),
            Principal=('Principal', 'sum'),
            Outstanding=('Outstanding', 'sum'),
        ).reset_index()
    summary.to_excel(writer, sheet_name='Summary', index=False)

    worksheet = writer.sheets['Portfolio']
    _style_header(worksheet, len(columns))
    for row in range(2, len(df) + 2):
        for col_num in range(8, 12):
            worksheet.cell(row=row, column=col_num).number_format = '#,##0.00'
    for column, width in zip('ABCDEFGHIJK', (20, 30, 22, 18, 14, 12, 12, 16, 16, 16, 16)):
        worksheet.column_dimensions[column].width = width

    _add_title(worksheet, 'K', [
        'LOAN PORTFOLIO',
        f'As at {timezone.localdate().strftime("%B %d, %Y")} | Amounts in {currency}',
    ])
    _style_header(writer.sheets['Summary'], 4)

    return _finish(output, writer, f'loan_portfolio_{timezone.localdate().strftime("%Y%m%d")}.xlsx')


def export_to_csv(data, columns, filename='export.csv'):
    """Generic CSV export function"""
    df = pd.DataFrame(data, columns=columns)

    response = create_csv_response(filename)
    df.to_csv(response, index=False)
    return response
