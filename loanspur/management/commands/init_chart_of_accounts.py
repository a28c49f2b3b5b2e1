"""
Management command to initialize the default Chart of Accounts for a tenant

This command creates:
- The standard microfinance GL accounts (assets, liabilities, equity, income, expenses)
- The default payment types (cash, bank transfer, M-Pesa, cheque)

Usage:
    python manage.py init_chart_of_accounts --tenant acme
    python manage.py init_chart_of_accounts --tenant acme --reset  # Remove unused accounts and recreate
    python manage.py init_chart_of_accounts --all
"""

from django.core.management.base import BaseCommand, CommandError

from loanspur.models import Tenant
from loanspur.utils.accounting_helpers import seed_chart_of_accounts, seed_payment_types


class Command(BaseCommand):
    help = 'Initialize the default Chart of Accounts and payment types for a tenant'

    def add_arguments(self, parser):
        parser.add_argument(
            '--tenant',
            help='Subdomain of the tenant to initialize',
        )
        parser.add_argument(
            '--all',
            action='store_true',
            help='Initialize every active tenant',
        )
        parser.add_argument(
            '--reset',
            action='store_true',
            help='Delete accounts without journal activity before recreating',
        )

    def handle(self, *args, **options):
        if options['all']:
            tenants = Tenant.objects.filter(status='active')
        elif options['tenant']:
            tenants = Tenant.objects.filter(subdomain=options['tenant'])
            if not tenants.exists():
                raise CommandError(f"Tenant '{options['tenant']}' does not exist")
        else:
            raise CommandError('Pass --tenant <subdomain> or --all')

        self.stdout.write(self.style.SUCCESS('\n=== Initializing Chart of Accounts ===\n'))

        for tenant in tenants:
            if options['reset']:
                self.stdout.write(self.style.WARNING(f'Removing unused accounts for {tenant.name}...'))
            accounts = seed_chart_of_accounts(tenant, reset=options['reset'])
            payment_types = seed_payment_types(tenant)
            self.stdout.write(
                f'  {tenant.name}: {accounts} accounts, {payment_types} payment types created'
            )

        self.stdout.write(self.style.SUCCESS('\n[SUCCESS] Chart of Accounts initialized successfully!\n'))
