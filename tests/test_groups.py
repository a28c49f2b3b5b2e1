from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from loanspur.models import Client, ClientGroup, GroupMember, LoanPayment

pytestmark = pytest.mark.django_db


def post(client, url, data=None):
    return client.post(url, data or {}, content_type='application/json')


@pytest.fixture
def make_client(tenant, office, tenant_admin):
    def _make(first_name, national_id, phone, **extra):
        values = dict(
            tenant=tenant,
            office=office,
            first_name=first_name,
            last_name='Achieng',
            phone=phone,
            national_id=national_id,
            created_by=tenant_admin,
            approval_status='approved',
        )
        values.update(extra)
        return Client.objects.create(**values)
    return _make


@pytest.fixture
def pending_group(tenant, office, loan_officer, tenant_admin):
    return ClientGroup.objects.create(
        tenant=tenant,
        name='Umoja Women Group',
        office=office,
        loan_officer=loan_officer,
        meeting_day='tuesday',
        max_members=3,
        created_by=loan_officer,
    )


@pytest.fixture
def group(pending_group, tenant_admin):
    pending_group.approve(tenant_admin)
    return pending_group


class TestLifecycle:

    def test_group_number_uses_office_code(self, pending_group):
        assert pending_group.group_number.startswith('GRP-HQ-')
        assert pending_group.status == 'pending'

    def test_approve_and_reject_only_from_pending(self, pending_group, tenant_admin):
        pending_group.approve(tenant_admin)

        assert pending_group.status == 'active'
        assert pending_group.approved_by == tenant_admin
        with pytest.raises(ValueError):
            pending_group.reject(tenant_admin, 'Duplicate registration')

    def test_close_releases_members(self, group, borrower, tenant_admin):
        group.add_member(borrower, added_by=tenant_admin)

        group.close(tenant_admin, 'Group dissolved')

        assert group.status == 'closed'
        assert group.is_active is False
        assert group.total_members == 0
        membership = GroupMember.objects.get(group=group, client=borrower)
        assert membership.is_active is False
        assert membership.exit_reason == 'Group dissolved'
        with pytest.raises(ValueError):
            group.close(tenant_admin)

    def test_queryset_filters(self, tenant, pending_group, group, loan_officer):
        other = ClientGroup.objects.create(
            tenant=tenant, name='Tumaini Youth', office=pending_group.office, created_by=loan_officer,
        )

        assert list(ClientGroup.objects.for_tenant(tenant).pending_approval()) == [other]
        assert list(ClientGroup.objects.for_tenant(tenant).operating()) == [group]
        assert list(ClientGroup.objects.for_tenant(tenant).for_officer(loan_officer)) == [group]
        assert list(ClientGroup.objects.for_tenant(tenant).search('umoja')) == [group]

    def test_max_members_validated(self, pending_group):
        pending_group.max_members = 1

        with pytest.raises(ValidationError) as excinfo:
            pending_group.full_clean()
        assert 'max_members' in excinfo.value.message_dict


class TestMembership:

    def test_add_member_updates_statistics(self, group, borrower, active_savings, tenant_admin):
        membership = group.add_member(borrower, role='chairperson', added_by=tenant_admin)

        assert membership.role == 'chairperson'
        group.refresh_from_db()
        assert group.total_members == 1
        assert group.active_members == 1
        assert group.total_savings == Decimal('1000.00')

    def test_pending_group_refuses_members(self, pending_group, borrower):
        allowed, reason = pending_group.can_add_member(borrower)

        assert allowed is False
        assert reason == 'Group is not active'

    def test_unapproved_client_refused(self, group, make_client):
        applicant = make_client('Akinyi', '22334455', '0722000001', approval_status='pending')

        with pytest.raises(ValidationError) as excinfo:
            group.add_member(applicant)
        assert excinfo.value.messages == ['Only approved, active clients can join a group']

    def test_client_in_one_group_at_a_time(self, tenant, group, borrower, office, loan_officer, tenant_admin):
        group.add_member(borrower)
        second = ClientGroup.objects.create(
            tenant=tenant, name='Tumaini Youth', office=office, created_by=loan_officer,
        )
        second.approve(tenant_admin)

        allowed, reason = second.can_add_member(borrower)

        assert allowed is False
        assert reason == 'Client already belongs to Umoja Women Group'
        assert group.can_add_member(borrower) == (False, 'Client is already a member of this group')

    def test_client_from_other_office_refused(self, group, make_client, branch):
        traveller = make_client('Otieno', '99887766', '0722000002', office=branch)

        assert group.can_add_member(traveller) == (False, 'Client must be from the same office as the group')

    def test_capacity(self, group, borrower, make_client):
        group.add_member(borrower)
        group.add_member(make_client('Akinyi', '22334455', '0722000001'))
        group.add_member(make_client('Njeri', '33445566', '0722000003'))

        allowed, reason = group.can_add_member(make_client('Chebet', '44556677', '0722000004'))

        assert allowed is False
        assert reason == 'Group has reached maximum capacity (3 members)'
        assert list(ClientGroup.objects.at_capacity()) == [group]

    def test_leadership_roles_are_unique(self, group, borrower, make_client):
        group.add_member(borrower, role='treasurer')
        other = make_client('Akinyi', '22334455', '0722000001')

        assert group.can_add_member(other, role='treasurer') == (False, 'This group already has a treasurer')

        group.add_member(other)
        with pytest.raises(ValidationError):
            group.change_member_role(other, 'treasurer')
        assert group.change_member_role(other, 'secretary').role == 'secretary'

    def test_remove_member_keeps_history(self, group, borrower, tenant_admin):
        group.add_member(borrower)

        membership = group.remove_member(borrower, removed_by=tenant_admin, reason='Relocated')

        assert membership.is_active is False
        assert membership.left_date is not None
        assert group.total_members == 0
        with pytest.raises(ValidationError):
            group.remove_member(borrower)
        # free to join again
        assert group.can_add_member(borrower) == (True, '')


class TestCollections:

    @pytest.fixture
    def members_with_loans(self, group, borrower, make_client, make_loan, tenant_admin):
        second = make_client('Akinyi', '22334455', '0722000001')
        group.add_member(borrower)
        group.add_member(second)

        loans = []
        for client in (borrower, second):
            loan = make_loan(client=client)
            loan.approve(tenant_admin)
            loan.disburse(tenant_admin, method='cash')
            loans.append(loan)
        return loans

    def test_collection_sheet_lists_member_loans(self, group, members_with_loans):
        rows = group.get_collection_sheet()

        assert {row['loan'].id for row in rows} == {loan.id for loan in members_with_loans}
        assert all(row['outstanding_balance'] > 0 for row in rows)

    def test_collect_posts_each_member(self, group, members_with_loans, cashier):
        first, second = members_with_loans

        payments = group.collect_repayments(
            [(first, Decimal('1500')), (second, Decimal('1000'))],
            Decimal('2500'),
            cashier,
            reference='MTG-0412',
        )

        assert len(payments) == 2
        first.refresh_from_db()
        second.refresh_from_db()
        assert first.amount_paid == Decimal('1500.00')
        assert second.amount_paid == Decimal('1000.00')
        assert payments[0].reference_number == 'MTG-0412'
        group.refresh_from_db()
        assert group.total_loans_outstanding == first.outstanding_balance + second.outstanding_balance

    def test_total_must_match_member_amounts(self, group, members_with_loans, cashier):
        first, second = members_with_loans

        with pytest.raises(ValidationError) as excinfo:
            group.collect_repayments([(first, Decimal('1500')), (second, Decimal('1000'))], Decimal('3000'), cashier)

        assert excinfo.value.messages == ['Member amounts add up to 2,500.00 but 3,000.00 was collected']
        assert not LoanPayment.objects.filter(loan__in=members_with_loans).exists()

    def test_refused_repayment_rolls_back_batch(self, group, members_with_loans, cashier):
        first, second = members_with_loans
        too_much = second.outstanding_balance + 1

        with pytest.raises(ValidationError):
            group.collect_repayments(
                [(first, Decimal('1500')), (second, too_much)], Decimal('1500') + too_much, cashier,
            )

        first.refresh_from_db()
        assert first.amount_paid == 0
        assert not LoanPayment.objects.filter(loan__in=members_with_loans).exists()

    def test_loan_of_non_member_refused(self, group, members_with_loans, make_client, make_loan, tenant_admin, cashier):
        outsider_loan = make_loan(client=make_client('Chebet', '44556677', '0722000004'))
        outsider_loan.approve(tenant_admin)
        outsider_loan.disburse(tenant_admin, method='cash')

        with pytest.raises(ValidationError):
            group.collect_repayments([(outsider_loan, Decimal('500'))], Decimal('500'), cashier)
        assert not outsider_loan.payments.exists()


class TestGroupViews:

    def test_create_and_approve(self, api, office):
        response = post(api, '/groups/', {'name': 'Baraka Traders', 'office': str(office.id), 'max_members': 20})
        assert response.status_code == 201
        group_id = response.json()['group']['id']
        assert response.json()['group']['status'] == 'pending'

        response = post(api, f'/groups/{group_id}/approve/', {'decision': 'approve'})
        assert response.status_code == 200
        assert response.json()['group']['status'] == 'active'

    def test_reject_needs_reason(self, api, pending_group):
        response = post(api, f'/groups/{pending_group.id}/approve/', {'decision': 'reject'})

        assert response.status_code == 400
        assert 'reason' in response.json()['errors']

    def test_duplicate_name_refused(self, api, pending_group, office):
        response = post(api, '/groups/', {'name': 'umoja women group', 'office': str(office.id)})

        assert response.status_code == 400
        assert 'name' in response.json()['errors']

    def test_loan_officer_creates_in_own_office(self, client, loan_officer):
        client.force_login(loan_officer)

        response = post(client, '/groups/', {'name': 'Jua Kali Artisans'})

        assert response.status_code == 201
        group = ClientGroup.objects.get(id=response.json()['group']['id'])
        assert group.office == loan_officer.office
        assert group.loan_officer == loan_officer

    def test_cashier_cannot_approve(self, client, cashier, pending_group):
        client.force_login(cashier)

        assert post(client, f'/groups/{pending_group.id}/approve/', {'decision': 'approve'}).status_code == 403

    def test_member_endpoints(self, api, group, borrower):
        response = post(api, f'/groups/{group.id}/members/', {'client': str(borrower.id), 'role': 'secretary'})
        assert response.status_code == 201
        assert response.json()['member']['client_number'] == borrower.client_number

        members = api.get(f'/groups/{group.id}/').json()['group']['members']
        assert [m['role'] for m in members] == ['secretary']

        response = post(api, f'/groups/{group.id}/members/role/', {'client': str(borrower.id), 'role': 'treasurer'})
        assert response.json()['member']['role'] == 'treasurer'

        response = post(api, f'/groups/{group.id}/members/remove/', {'client': str(borrower.id), 'reason': 'Moved away'})
        assert response.status_code == 200
        assert api.get(f'/groups/{group.id}/members/').json()['members'] == []

    def test_adding_to_second_group_refused(self, api, group, borrower, tenant, office, loan_officer, tenant_admin):
        group.add_member(borrower)
        second = ClientGroup.objects.create(tenant=tenant, name='Tumaini Youth', office=office, created_by=loan_officer)
        second.approve(tenant_admin)

        response = post(api, f'/groups/{second.id}/members/', {'client': str(borrower.id)})

        assert response.status_code == 400
        assert response.json()['error'] == 'Client already belongs to Umoja Women Group'

    def test_collect_endpoint(self, api, group, borrower, active_loan):
        group.add_member(borrower)

        sheet = api.get(f'/groups/{group.id}/collection-sheet/').json()
        assert [row['loan_number'] for row in sheet['rows']] == [active_loan.loan_number]

        response = post(api, f'/groups/{group.id}/collect/', {
            'total_amount': '1200.00',
            'method': 'cash',
            'items': [{'loan': str(active_loan.id), 'amount': '1200.00'}],
        })

        assert response.status_code == 201
        assert len(response.json()['payments']) == 1
        active_loan.refresh_from_db()
        assert active_loan.amount_paid == Decimal('1200.00')

    def test_collect_mismatch_returns_400(self, api, group, borrower, active_loan):
        group.add_member(borrower)

        response = post(api, f'/groups/{group.id}/collect/', {
            'total_amount': '1000.00',
            'method': 'cash',
            'items': [{'loan': str(active_loan.id), 'amount': '1200.00'}],
        })

        assert response.status_code == 400
        assert 'add up to 1,200.00' in response.json()['error']
        assert not active_loan.payments.exists()

    def test_other_tenant_group_hidden(self, client, other_tenant, group):
        admin = other_tenant.users.get(role='tenant_admin')
        client.force_login(admin)

        assert client.get(f'/groups/{group.id}/').status_code == 404
