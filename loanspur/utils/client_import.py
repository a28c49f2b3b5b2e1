"""
Client Bulk Import
==================

Reads clients from a CSV or Excel upload with pandas. Every row goes
through ClientForm so imported clients obey the same rules as ones typed
in by hand. Rows that fail are reported, the rest are created pending
approval.
"""

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
import logging
import os

import pandas as pd

from loanspur.forms.client_forms import ClientForm

logger = logging.getLogger(__name__)

IMPORT_COLUMNS = [
    'client_number', 'first_name', 'middle_name', 'last_name', 'phone', 'email',
    'national_id', 'date_of_birth', 'gender', 'occupation', 'monthly_income', 'address',
]

REQUIRED_COLUMNS = ['first_name', 'last_name']

COLUMN_ALIASES = {
    'phone_number': 'phone',
    'mobile': 'phone',
    'id_number': 'national_id',
    'dob': 'date_of_birth',
    'income': 'monthly_income',
}


def read_upload(uploaded_file):
    """
    Load the first sheet of an upload into a DataFrame of strings

    ``.csv`` files are read as CSV, everything else as an Excel workbook.
    """
    extension = os.path.splitext(uploaded_file.name or '')[1].lower()
    try:
        if extension == '.csv':
            df = pd.read_csv(uploaded_file, dtype=str, keep_default_na=False)
        else:
            df = pd.read_excel(uploaded_file, sheet_name=0, dtype=str, engine='openpyxl')
    except (ValueError, OSError, pd.errors.ParserError) as e:
        raise ValidationError(f"Could not read {uploaded_file.name}: {e}")

    df.columns = [
        COLUMN_ALIASES.get(key, key)
        for key in (str(column).strip().lower().replace(' ', '_') for column in df.columns)
    ]
    missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
    if missing:
        raise ValidationError(f"Missing required columns: {', '.join(missing)}")

    return df.fillna('')


def row_to_form_data(row):
    data = {}
    for column in IMPORT_COLUMNS:
        value = str(row.get(column, '') or '').strip()
        if column == 'gender':
            value = value.lower()
        elif column == 'date_of_birth' and value:
            # Excel dates come back as "2001-05-04 00:00:00"
            value = value.split(' ')[0]
        elif column == 'monthly_income':
            value = value.replace(',', '')
        data[column] = value
    return data


def import_clients(tenant, uploaded_file, imported_by, office=None):
    """
    Create a client for every valid row of ``uploaded_file``

    Row numbers in errors count the header as row 1, as a spreadsheet does.

    Returns:
        dict: {'imported': int, 'errors': [str], 'clients': [Client]}

    Raises:
        ValidationError: the file is unreadable or no row could be imported
    """
    df = read_upload(uploaded_file)
    office = office or imported_by.office

    clients = []
    errors = []
    for index, row in df.iterrows():
        row_number = index + 2
        data = row_to_form_data(row)

        if not data['first_name'] or not data['last_name']:
            errors.append(f"Row {row_number}: first_name and last_name are required")
            continue

        form = ClientForm(data, tenant=tenant)
        if not form.is_valid():
            messages = [
                f"{field}: {' '.join(field_errors)}" if field != '__all__' else ' '.join(field_errors)
                for field, field_errors in form.errors.items()
            ]
            errors.append(f"Row {row_number}: {'; '.join(messages)}")
            continue

        client = form.save(commit=False)
        client.client_number = data['client_number']
        client.approval_status = 'pending'
        client.created_by = imported_by
        if not client.office_id:
            client.office = office

        try:
            with transaction.atomic():
                client.save()
        except IntegrityError as e:
            logger.warning(f"Client import row {row_number} failed for {tenant.slug}: {e}")
            errors.append(f"Row {row_number}: {e}")
            continue
        clients.append(client)

    if not clients:
        raise ValidationError(
            ["No valid records found"] + errors[:20]
        )

    logger.info(
        f"Clients imported for {tenant.slug}: {len(clients)} created, {len(errors)} rows rejected "
        f"by {imported_by.email}"
    )
    return {'imported': len(clients), 'errors': errors, 'clients': clients}
