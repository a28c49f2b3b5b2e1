import pytest
from django.core.exceptions import PermissionDenied
from django.http import JsonResponse

from loanspur.models import Client, Loan, Transaction
from loanspur.permissions import PermissionChecker, tenant_required

pytestmark = pytest.mark.django_db


@pytest.mark.parametrize('role, approve, disburse, reverse, record, financials', [
    ('tenant_admin', True, True, True, True, True),
    ('accountant', False, True, True, True, True),
    ('loan_officer', False, False, False, True, False),
    ('cashier', False, False, False, True, False),
])
def test_role_actions(request, role, approve, disburse, reverse, record, financials):
    user = request.getfixturevalue(role)
    checker = PermissionChecker(user)

    assert checker.can_approve_loans() is approve
    assert checker.can_disburse_loans() is disburse
    assert checker.can_reverse_payments() is reverse
    assert checker.can_record_payments() is record
    assert checker.can_view_financials() is financials


def test_write_off_limited_to_admins(tenant_admin, accountant, super_admin):
    assert PermissionChecker(tenant_admin).can_write_off_loans()
    assert PermissionChecker(super_admin).can_write_off_loans()
    assert not PermissionChecker(accountant).can_write_off_loans()


def test_tenant_boundary(tenant, other_tenant, tenant_admin, super_admin):
    checker = PermissionChecker(tenant_admin)
    assert checker.can_access_tenant(tenant)
    assert not checker.can_access_tenant(other_tenant)
    assert not checker.can_access_tenant(None)

    assert PermissionChecker(super_admin).can_access_tenant(other_tenant)


def test_super_admin_acts_in_resolved_tenant(tenant, super_admin):
    assert PermissionChecker(super_admin, tenant).tenant == tenant


class TestVisibility:

    @pytest.fixture
    def stranger(self, tenant, branch, tenant_admin):
        return Client.objects.create(
            tenant=tenant, office=branch, first_name='Otieno', last_name='Ouma', phone='254722000111',
            created_by=tenant_admin, approval_status='approved',
        )

    def test_loan_officer_sees_assigned_clients(self, loan_officer, borrower, stranger):
        checker = PermissionChecker(loan_officer)

        assert checker.can_view_client(borrower)
        assert not checker.can_view_client(stranger)
        assert list(checker.filter_clients(Client.objects.all())) == [borrower]

    def test_cashier_sees_own_office(self, cashier, borrower, stranger):
        checker = PermissionChecker(cashier)

        assert checker.can_view_client(borrower)
        assert not checker.can_view_client(stranger)
        assert list(checker.filter_clients(Client.objects.all())) == [borrower]

    def test_admin_sees_whole_tenant(self, tenant_admin, borrower, stranger, other_tenant):
        assert set(PermissionChecker(tenant_admin).filter_clients(Client.objects.all())) == {borrower, stranger}

    def test_filter_loans(self, loan_officer, accountant, make_loan, stranger):
        mine = make_loan()
        theirs = make_loan(client=stranger)
        Loan.objects.filter(pk=theirs.pk).update(loan_officer=None)

        assert list(PermissionChecker(loan_officer).filter_loans(Loan.objects.all())) == [mine]
        assert set(PermissionChecker(accountant).filter_loans(Loan.objects.all())) == {mine, theirs}

    def test_other_tenant_sees_nothing(self, other_tenant, borrower, active_loan):
        other_admin = other_tenant.users.get(role='tenant_admin')
        checker = PermissionChecker(other_admin)

        assert not checker.can_view_client(borrower)
        assert not checker.filter_loans(Loan.objects.all()).exists()
        assert not checker.filter_transactions(Transaction.objects.all()).exists()


class TestTenantRequired:

    @staticmethod
    def view(request):
        return JsonResponse({'tenant': str(request.tenant.id)})

    def test_passes_with_own_tenant(self, rf, tenant, tenant_admin):
        request = rf.get('/')
        request.user = tenant_admin
        request.tenant = tenant

        response = tenant_required(self.view)(request)
        assert response.status_code == 200

    def test_no_tenant(self, rf, super_admin):
        request = rf.get('/')
        request.user = super_admin
        request.tenant = None

        response = tenant_required(self.view)(request)
        assert response.status_code == 400

    def test_foreign_tenant(self, rf, other_tenant, tenant_admin):
        request = rf.get('/')
        request.user = tenant_admin
        request.tenant = other_tenant

        with pytest.raises(PermissionDenied):
            tenant_required(self.view)(request)
