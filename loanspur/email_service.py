"""
Email Service for LoanspurCBS
=============================

Handles all email sending functionality using SMTP
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from django.conf import settings
from django.utils.html import escape
import logging

from loanspur.tenancy import build_subdomain_url

logger = logging.getLogger(__name__)


def send_email(to_email, subject, html_content):
    """
    Send HTML email using SMTP

    Args:
        to_email: Recipient email address
        subject: Email subject
        html_content: HTML content of the email

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    try:
        smtp_host = getattr(settings, 'EMAIL_HOST', 'smtp.gmail.com')
        smtp_port = getattr(settings, 'EMAIL_PORT', 587)
        smtp_username = getattr(settings, 'EMAIL_HOST_USER', '')
        smtp_password = getattr(settings, 'EMAIL_HOST_PASSWORD', '')
        from_email = getattr(settings, 'DEFAULT_FROM_EMAIL', smtp_username)

        if not smtp_username or not smtp_password:
            logger.warning("Email credentials not configured. Email not sent.")
            return False

        message = MIMEMultipart('alternative')
        message['Subject'] = subject
        message['From'] = from_email
        message['To'] = to_email
        message.attach(MIMEText(html_content, 'html'))

        if getattr(settings, 'EMAIL_USE_TLS', True):
            server = smtplib.SMTP(smtp_host, smtp_port)
            server.starttls()
        else:
            server = smtplib.SMTP_SSL(smtp_host, smtp_port)

        server.login(smtp_username, smtp_password)
        server.sendmail(from_email, to_email, message.as_string())
        server.quit()

        logger.info(f"Email sent successfully to {to_email}")
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email to {to_email}: {str(e)}")
        return False


def _render(title, body_html, accent='#0f766e'):
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
        <style>
            body {{ font-family: 'Segoe UI', Tahoma, sans-serif; color: #333; background: #f4f4f4; }}
            .container {{ max-width: 600px; margin: 0 auto; background: #fff; border-radius: 8px; overflow: hidden; }}
            .header {{ background: {accent}; color: #fff; padding: 28px 20px; text-align: center; }}
            .content {{ padding: 30px; line-height: 1.6; }}
            .button {{ display: inline-block; padding: 12px 28px; background: {accent}; color: #fff;
                       text-decoration: none; border-radius: 6px; }}
            .footer {{ padding: 16px; text-align: center; font-size: 12px; color: #888; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header"><h1>{escape(title)}</h1></div>
            <div class="content">{body_html}</div>
            <div class="footer">LoanspurCBS</div>
        </div>
    </body>
    </html>
    """


def send_tenant_welcome_email(tenant, admin_user):
    """Sent once a new organisation has been registered"""
    login_url = build_subdomain_url(tenant.subdomain, '/auth/login/')
    trial_end = tenant.trial_ends_at.strftime('%d %b %Y') if tenant.trial_ends_at else 'N/A'

    body = f"""
        <p>Hello {escape(admin_user.get_full_name() or admin_user.email)},</p>
        <p><strong>{escape(tenant.name)}</strong> is ready on LoanspurCBS.</p>
        <p>Your workspace address is <strong>{escape(login_url)}</strong>.
           Your free trial runs until <strong>{trial_end}</strong>.</p>
        <p><a class="button" href="{escape(login_url)}">Sign in</a></p>
    """
    return send_email(admin_user.email, f"Welcome to LoanspurCBS, {tenant.name}", _render('Welcome aboard', body))


def send_user_invitation_email(user, temporary_password):
    """Sent when a tenant admin adds a staff member"""
    tenant = user.tenant
    login_url = build_subdomain_url(tenant.subdomain, '/auth/login/') if tenant else settings.SITE_URL

    body = f"""
        <p>Hello {escape(user.get_full_name() or user.email)},</p>
        <p>You have been added to <strong>{escape(tenant.name if tenant else 'LoanspurCBS')}</strong>
           as <strong>{escape(user.get_role_display())}</strong>.</p>
        <p>Sign in with <strong>{escape(user.email)}</strong> and the temporary password
           <code>{escape(temporary_password)}</code>, then change it.</p>
        <p><a class="button" href="{escape(login_url)}">Sign in</a></p>
    """
    return send_email(user.email, "You have been invited to LoanspurCBS", _render('Invitation', body))


def send_loan_approval_email(loan):
    """Tell a client their loan was approved"""
    client = loan.client
    if not client.email:
        logger.info(f"Loan approval email skipped for {loan.loan_number}: client has no email")
        return False

    body = f"""
        <p>Dear {escape(client.get_full_name())},</p>
        <p>Your loan application <strong>{escape(loan.loan_number)}</strong> for
           <strong>{loan.principal_amount:,.2f}</strong> has been approved by {escape(loan.tenant.name)}.</p>
        <p>You will be notified once the funds are disbursed.</p>
    """
    return send_email(client.email, f"Loan {loan.loan_number} approved", _render('Loan approved', body, '#16a34a'))
