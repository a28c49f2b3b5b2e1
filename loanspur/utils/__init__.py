"""
LoanspurCBS Utilities Package
=============================

Provides utility functions for:
- Money and fee calculations
- Loan schedules and repayment allocation
- Accounting helpers (journal entry creation, postings, reports)
- PDF export (WeasyPrint)
- Excel export (Pandas/openpyxl)

Import directly from submodules to avoid circular imports:
    from loanspur.utils.accounting_helpers import create_journal_entry
    from loanspur.utils.pdf_export import generate_loan_statement_pdf
    from loanspur.utils.excel_export import export_trial_balance_excel
"""
