"""
Base Forms
==========

Shared behaviour for forms bound to a tenant
"""

from django import forms


class TenantFormMixin:
    """
    Limits every model choice to the given tenant's rows

    Pass ``tenant=`` when building the form. ModelForms also get the tenant
    set on a new instance so model validation can compare ownership.
    """

    def __init__(self, *args, **kwargs):
        self.tenant = kwargs.pop('tenant', None)
        super().__init__(*args, **kwargs)

        for field in self.fields.values():
            if isinstance(field, (forms.ModelChoiceField, forms.ModelMultipleChoiceField)):
                queryset = field.queryset
                if hasattr(queryset, 'for_tenant'):
                    field.queryset = queryset.for_tenant(self.tenant)
                elif 'tenant' in {f.name for f in queryset.model._meta.fields}:
                    field.queryset = queryset.filter(tenant=self.tenant) if self.tenant else queryset.none()

        instance = getattr(self, 'instance', None)
        if instance is not None and self.tenant is not None and not instance.pk:
            instance.tenant = self.tenant
