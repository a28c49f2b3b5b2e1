from datetime import date
from decimal import Decimal
from io import BytesIO

import pandas as pd
import pytest
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile

from loanspur.models import Client
from loanspur.utils.client_import import import_clients

pytestmark = pytest.mark.django_db

XLSX = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def csv_upload(text, name='clients.csv'):
    return SimpleUploadedFile(name, text.encode('utf-8'), content_type='text/csv')


def xlsx_upload(rows, name='clients.xlsx'):
    output = BytesIO()
    pd.DataFrame(rows).to_excel(output, index=False, engine='openpyxl')
    return SimpleUploadedFile(name, output.getvalue(), content_type=XLSX)


class TestImportClients:

    def test_valid_rows_created_pending(self, tenant, tenant_admin):
        upload = csv_upload(
            "first_name,last_name,phone,national_id,gender,date_of_birth,monthly_income\n"
            "Achieng,Odhiambo,0711000001,30111222,Female,1990-04-12,\"25,000\"\n"
            "Mwangi,Kariuki,+254722000002,30111333,male,,\n"
        )

        result = import_clients(tenant, upload, tenant_admin)

        assert result['imported'] == 2
        assert result['errors'] == []
        client = Client.objects.for_tenant(tenant).get(national_id='30111222')
        assert client.approval_status == 'pending'
        assert client.created_by == tenant_admin
        assert client.phone == '254711000001'
        assert client.gender == 'female'
        assert client.date_of_birth == date(1990, 4, 12)
        assert client.monthly_income == Decimal('25000.00')
        assert client.client_number.startswith('CL')

    def test_bad_rows_reported_with_sheet_row_numbers(self, tenant, tenant_admin, borrower):
        upload = csv_upload(
            "first_name,last_name,phone,national_id\n"
            "Achieng,Odhiambo,0711000001,30111222\n"
            "Otieno,,0711000003,30111444\n"
            "Wanjiru,Kamau,0711000004,12345678\n"
            "Kiprop,Rotich,12345,30111555\n"
        )

        result = import_clients(tenant, upload, tenant_admin)

        assert result['imported'] == 1
        assert result['errors'] == [
            "Row 3: first_name and last_name are required",
            "Row 4: national_id: A client with this national ID already exists.",
            "Row 5: phone: Enter a valid Kenyan mobile number, e.g. 0712345678",
        ]

    def test_national_id_repeated_within_file(self, tenant, tenant_admin):
        upload = csv_upload(
            "first_name,last_name,phone,national_id\n"
            "Achieng,Odhiambo,0711000001,30111222\n"
            "Akinyi,Odhiambo,0711000002,30111222\n"
        )

        result = import_clients(tenant, upload, tenant_admin)

        assert result['imported'] == 1
        assert result['errors'][0].startswith('Row 3: national_id:')
        assert Client.objects.for_tenant(tenant).filter(national_id='30111222').count() == 1

    def test_excel_sheet(self, tenant, tenant_admin, office):
        upload = xlsx_upload([
            {'First Name': 'Chebet', 'Last Name': 'Koech', 'Phone': 722000005,
             'ID Number': '30111666', 'Date of Birth': date(1985, 1, 30)},
        ])

        result = import_clients(tenant, upload, tenant_admin, office=office)

        client = result['clients'][0]
        assert client.phone == '254722000005'
        assert client.national_id == '30111666'
        assert client.date_of_birth == date(1985, 1, 30)
        assert client.office == office

    def test_no_valid_rows(self, tenant, tenant_admin):
        upload = csv_upload("first_name,last_name,phone\n,Odhiambo,0711000001\n")

        with pytest.raises(ValidationError) as excinfo:
            import_clients(tenant, upload, tenant_admin)
        assert excinfo.value.messages[0] == 'No valid records found'
        assert not Client.objects.for_tenant(tenant).exists()

    def test_missing_name_columns(self, tenant, tenant_admin):
        with pytest.raises(ValidationError) as excinfo:
            import_clients(tenant, csv_upload("name,phone\nAchieng,0711000001\n"), tenant_admin)
        assert excinfo.value.messages == ['Missing required columns: first_name, last_name']


class TestImportView:

    def test_upload(self, api, tenant):
        upload = csv_upload(
            "first_name,last_name,phone\n"
            "Achieng,Odhiambo,0711000001\n"
            "Otieno,,0711000003\n"
        )

        response = api.post('/clients/import/', {'file': upload})

        assert response.status_code == 201
        body = response.json()
        assert body['imported'] == 1
        assert body['message'] == 'Successfully imported 1 clients with 1 errors'
        assert body['clients'][0]['approval_status'] == 'pending'

    def test_wrong_file_type(self, api):
        response = api.post('/clients/import/', {'file': SimpleUploadedFile('clients.pdf', b'%PDF-1.4')})

        assert response.status_code == 400
        assert 'file' in response.json()['errors']

    def test_loan_officer_cannot_import(self, client, loan_officer):
        client.force_login(loan_officer)

        response = client.post('/clients/import/', {'file': csv_upload("first_name,last_name\nA,B\n")})

        assert response.status_code == 403
