"""
PDF Export Utilities using WeasyPrint
=====================================

Client statements rendered from templates
"""

from django.template.loader import render_to_string
from django.http import HttpResponse
from django.utils import timezone
import logging

logger = logging.getLogger(__name__)


PDF_CSS = '''
    @page {
        size: A4;
        margin: 2cm 1.5cm;

        @top-center {
            content: string(organisation);
            font-size: 10pt;
            color: #6B7280;
        }

        @bottom-right {
            content: "Page " counter(page) " of " counter(pages);
            font-size: 9pt;
            color: #6B7280;
        }
    }

    body {
        font-family: 'Arial', sans-serif;
        font-size: 10pt;
        line-height: 1.4;
        color: #1F2937;
    }

    .organisation { string-set: organisation content(); }

    table {
        width: 100%;
        border-collapse: collapse;
        margin-bottom: 1rem;
    }

    thead { display: table-header-group; }

    tr { page-break-inside: avoid; }

    th {
        background-color: #F3F4F6;
        border-bottom: 2px solid #D1D5DB;
        padding: 8px 12px;
        text-align: left;
        font-size: 9pt;
        text-transform: uppercase;
        color: #374151;
    }

    td {
        border-bottom: 1px solid #E5E7EB;
        padding: 6px 12px;
    }

    .text-right { text-align: right; }

    .header-section {
        margin-bottom: 2rem;
        padding-bottom: 1rem;
        border-bottom: 2px solid #0F766E;
    }

    .report-title {
        font-size: 18pt;
        font-weight: 700;
        color: #0F766E;
    }

    .summary-box {
        background-color: #CCFBF1;
        border-left: 4px solid #0F766E;
        padding: 1rem;
        margin: 1rem 0;
    }
'''


def render_to_pdf(template_name, context, filename='report.pdf'):
    """
    Render a Django template to PDF using WeasyPrint

    Returns:
        HttpResponse with PDF content, or a 503 when WeasyPrint's system
        libraries are missing
    """
    # Lazy import - only load when function is called
    try:
        from weasyprint import HTML, CSS
        from weasyprint.text.fonts import FontConfiguration
    except (ImportError, OSError) as e:
        logger.error(f"PDF generation unavailable: {e}")
        return HttpResponse(
            f"PDF generation is not available in this environment. Error: {str(e)}",
            status=503,
            content_type='text/plain'
        )

    html_string = render_to_string(template_name, context)

    font_config = FontConfiguration()
    pdf_css = CSS(string=PDF_CSS, font_config=font_config)
    pdf_file = HTML(string=html_string).write_pdf(stylesheets=[pdf_css], font_config=font_config)

    response = HttpResponse(pdf_file, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


def generate_loan_statement_pdf(loan):
    """Loan statement with schedule and running balance"""
    context = {
        'tenant': loan.tenant,
        'loan': loan,
        'client': loan.client,
        'rows': loan.get_statement(),
        'schedule': loan.schedule.all(),
        'generated_at': timezone.now(),
    }
    return render_to_pdf('loanspur/pdf/loan_statement.html', context, f'loan_statement_{loan.loan_number}.pdf')


def generate_savings_statement_pdf(account, date_from=None, date_to=None):
    """Savings statement for an optional date range"""
    context = {
        'tenant': account.tenant,
        'account': account,
        'client': account.client,
        'rows': account.get_statement(date_from, date_to),
        'date_from': date_from,
        'date_to': date_to,
        'generated_at': timezone.now(),
    }
    return render_to_pdf(
        'loanspur/pdf/savings_statement.html', context, f'savings_statement_{account.account_number}.pdf'
    )
