"""
Authorization API URLs.

Provides endpoints for:
- Catalog listing
- Permission/module resolution and effective summaries
- Change validation and commits
- Permission templates
- Company module gates
- Audit event listing
"""
from django.urls import path
from apps.authz.views import (
    ApplyTemplateView,
    AuditEventListView,
    CatalogView,
    CommitChangesView,
    CompanyModuleView,
    EffectiveAccessView,
    ResolveModuleView,
    ResolvePermissionView,
    TemplateDetailView,
    TemplateListView,
    ValidateChangeView,
)

app_name = 'authz'

urlpatterns = [
    path('catalog', CatalogView.as_view(), name='catalog'),

    # Resolution endpoints
    path('users/<uuid:user_id>/permissions/<str:key>', ResolvePermissionView.as_view(), name='resolve-permission'),
    path('users/<uuid:user_id>/modules/<str:module_id>', ResolveModuleView.as_view(), name='resolve-module'),
    path('users/<uuid:user_id>/effective', EffectiveAccessView.as_view(), name='effective-access'),

    # Change endpoints
    path('changes/validate', ValidateChangeView.as_view(), name='changes-validate'),
    path('changes/commit', CommitChangesView.as_view(), name='changes-commit'),

    # Template endpoints
    path('templates', TemplateListView.as_view(), name='template-list'),
    path('templates/<uuid:template_id>', TemplateDetailView.as_view(), name='template-detail'),
    path('templates/<uuid:template_id>/apply', ApplyTemplateView.as_view(), name='template-apply'),

    # Company module gates
    path('companies/<uuid:company_id>/modules/<str:module_id>', CompanyModuleView.as_view(), name='company-module'),

    # Audit endpoint
    path('audit-events', AuditEventListView.as_view(), name='audit-event-list'),
]
