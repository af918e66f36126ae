"""
Authorization REST API views.

Implements endpoints for:
- Catalog listing
- Permission and module resolution, effective summaries
- Change validation and batched commits
- Permission templates (list, create, update, delete, apply)
- Company module gates
- Audit event listing
"""
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema, extend_schema_view

from apps.core.permissions import IsActiveAccount
from apps.authz.audit import origin_from_request
from apps.authz.catalog import PermissionCatalog
from apps.authz.changes import ChangeSet, PendingChange
from apps.authz.exceptions import UserNotFound
from apps.authz.serializers import (
    ApplyTemplateSerializer, AuditEventFilterSerializer, AuditEventSerializer, ChangeSerializer,
    CommitChangesSerializer, CompanyModuleSerializer, PendingChangeSerializer,
    PermissionTemplateSerializer, PermissionTemplateWriteSerializer, ValidateChangeSerializer,
)
from apps.authz.services import AuthorizationService
from apps.authz.template_engine import TemplateEngine


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def _validation_error(serializer):
    return Response(
        {
            'error': 'Validation error',
            'details': serializer.errors
        },
        status=status.HTTP_400_BAD_REQUEST
    )


@extend_schema_view(
    get=extend_schema(
        tags=['Authorization - Catalog'],
        summary='List permissions and modules',
        description='''
List every non-deprecated permission key and system module.

Each module carries its tier (`core`, `add-on`, `super`), whether it is
core-required, and the modules it depends on. Each permission carries its
module, tier and required keys.
        ''',
        responses={200: OpenApiTypes.OBJECT},
    )
)
class CatalogView(APIView):
    """
    GET /v1/authz/catalog
    """
    permission_classes = [IsActiveAccount]

    def get(self, request):
        return Response(PermissionCatalog.as_dict())


@extend_schema_view(
    get=extend_schema(
        tags=['Authorization - Resolution'],
        summary='Resolve a permission for a user',
        description='''
Return the effective value of one permission key for a user.

Resolution order: super-admin bypass, then the user's explicit override,
then the role default. Missing and inactive users resolve to `false`.
Users outside the caller's company are reported as not found.
        ''',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Granted',
                value={'user_id': '123e4567-e89b-12d3-a456-426614174000',
                       'permission': 'expenses.approve', 'allowed': True},
                response_only=True
            ),
        ]
    )
)
class ResolvePermissionView(APIView):
    """
    GET /v1/authz/users/{user_id}/permissions/{key}
    """
    permission_classes = [IsActiveAccount]

    def get(self, request, user_id, key):
        target = AuthorizationService.get_visible_user(request.user, user_id)
        allowed = AuthorizationService.resolve_permission(
            target.id, key, audit=True, origin=origin_from_request(request),
        )
        return Response({'user_id': str(target.id), 'permission': key, 'allowed': allowed})


@extend_schema_view(
    get=extend_schema(
        tags=['Authorization - Resolution'],
        summary='Resolve a module for a user',
        description='''
Return whether a module is effective for a user.

A module disabled at the company level is never effective, even with a
per-user grant. Core-required modules are effective while their company
gate is on. Other modules need an explicit per-user opt-in.
        ''',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class ResolveModuleView(APIView):
    """
    GET /v1/authz/users/{user_id}/modules/{module_id}
    """
    permission_classes = [IsActiveAccount]

    def get(self, request, user_id, module_id):
        target = AuthorizationService.get_visible_user(request.user, user_id)
        enabled = AuthorizationService.resolve_module(target.id, module_id)
        return Response({'user_id': str(target.id), 'module': module_id, 'enabled': enabled})


@extend_schema_view(
    get=extend_schema(
        tags=['Authorization - Resolution'],
        summary='Effective access summary',
        description='''
Full resolved permission and module maps for a user.

- Users may read their own summary.
- Admins may read users of their own company.
- Super-admins may read anyone.
        ''',
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class EffectiveAccessView(APIView):
    """
    GET /v1/authz/users/{user_id}/effective
    """
    permission_classes = [IsActiveAccount]

    def get(self, request, user_id):
        return Response(AuthorizationService.effective_summary(request.user.id, user_id))


@extend_schema_view(
    post=extend_schema(
        tags=['Authorization - Changes'],
        summary='Validate a proposed change',
        description='''
Check whether the caller may apply a change to a target user without
persisting anything.

Returns `allowed`, `errors`, `warnings`, the denial `code` (if any) and
`no_op` when the change would not alter the effective value. Denials are
recorded as `access_denied` audit events.
        ''',
        request=ValidateChangeSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Grant Request',
                value={
                    'target_id': '123e4567-e89b-12d3-a456-426614174000',
                    'change': {'type': 'grant_permission', 'key': 'expenses.approve'}
                },
                request_only=True
            ),
            OpenApiExample(
                'Denied Response',
                value={
                    'allowed': False,
                    'errors': ['This change requires a higher role than yours.'],
                    'warnings': [],
                    'code': 'insufficient_authority',
                    'no_op': False
                },
                response_only=True
            ),
        ]
    )
)
class ValidateChangeView(APIView):
    """
    POST /v1/authz/changes/validate
    """
    permission_classes = [IsActiveAccount]

    def post(self, request):
        serializer = ValidateChangeSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error(serializer)

        change = ChangeSerializer().to_change(serializer.validated_data['change'])
        result = AuthorizationService.validate_change(
            request.user.id,
            serializer.validated_data['target_id'],
            change,
            origin=origin_from_request(request),
        )
        return Response(result.to_dict())


@extend_schema_view(
    post=extend_schema(
        tags=['Authorization - Changes'],
        summary='Commit pending changes',
        description='''
Commit a batch of pending changes.

Changes are grouped by target user and each group is applied atomically:
either all of a user's changes land or none do. A failing group never
blocks other users' groups.

Each change may carry the `baseline` value the client observed. When the
stored value has moved on, the group fails with `concurrent_modification`
and the client should reload and re-diff. Changes without a baseline are
baselined on the current value.

Per-user results report `committed`, `failed` (with `error` and rejected
changes) or `cancelled`.
        ''',
        request=CommitChangesSerializer,
        responses={200: OpenApiTypes.OBJECT, 207: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
    )
)
class CommitChangesView(APIView):
    """
    POST /v1/authz/changes/commit
    """
    permission_classes = [IsActiveAccount]

    def post(self, request):
        serializer = CommitChangesSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error(serializer)

        change_set = ChangeSet()
        for item in serializer.validated_data['changes']:
            pending = PendingChangeSerializer().to_pending(item)
            if 'baseline' not in item:
                try:
                    pending = AuthorizationService.propose(request.user.id, item['target_id'], pending.change)
                except UserNotFound:
                    # Unknown or hidden targets are rejected by validation at commit time
                    pending = PendingChange(pending.target_id, pending.change, None)
            change_set.add(pending)

        results = AuthorizationService.commit_changes(
            request.user.id, change_set, origin=origin_from_request(request),
        )
        all_committed = all(r.ok for r in results)
        return Response(
            {'results': [r.to_dict() for r in results]},
            status=status.HTTP_200_OK if all_committed else status.HTTP_207_MULTI_STATUS
        )


@extend_schema_view(
    get=extend_schema(
        tags=['Authorization - Templates'],
        summary='List permission templates',
        description='''
System templates plus the caller's company templates. Super-admins see
every template. Plain users are denied.
        ''',
        responses={200: PermissionTemplateSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['Authorization - Templates'],
        summary='Create a custom template',
        description='''
Create a company template. Admins create templates for their own company
and cannot include super-tier permissions or modules.
        ''',
        request=PermissionTemplateWriteSerializer,
        responses={201: PermissionTemplateSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    )
)
class TemplateListView(APIView):
    """
    GET/POST /v1/authz/templates
    """
    permission_classes = [IsActiveAccount]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        templates = TemplateEngine.list_templates(request.user)
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(templates, request)
        serializer = PermissionTemplateSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def post(self, request):
        serializer = PermissionTemplateWriteSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error(serializer)

        data = serializer.validated_data
        template = TemplateEngine.create_template(
            request.user,
            display_name=data['display_name'],
            permission_keys=data.get('permission_keys', []),
            module_ids=data.get('module_ids', []),
            name=data.get('name', ''),
            description=data.get('description', ''),
            target_role=data.get('target_role'),
            company_id=data.get('company_id'),
            origin=origin_from_request(request),
        )
        return Response(PermissionTemplateSerializer(template).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    patch=extend_schema(
        tags=['Authorization - Templates'],
        summary='Update a custom template',
        description='Only the template author or a super-admin may update it. System templates are immutable.',
        request=PermissionTemplateWriteSerializer,
        responses={200: PermissionTemplateSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['Authorization - Templates'],
        summary='Delete a custom template',
        description='''
Soft delete a custom template. Access already granted by applying it is
not revoked.
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class TemplateDetailView(APIView):
    """
    PATCH/DELETE /v1/authz/templates/{template_id}
    """
    permission_classes = [IsActiveAccount]

    def patch(self, request, template_id):
        serializer = PermissionTemplateWriteSerializer(data=request.data, partial=True)
        if not serializer.is_valid():
            return _validation_error(serializer)

        fields = {
            key: value for key, value in serializer.validated_data.items()
            if key in ('display_name', 'description', 'target_role', 'permission_keys', 'module_ids')
        }
        template = TemplateEngine.update_template(
            request.user, template_id, origin=origin_from_request(request), **fields
        )
        return Response(PermissionTemplateSerializer(template).data)

    def delete(self, request, template_id):
        TemplateEngine.delete_template(request.user, template_id, origin=origin_from_request(request))
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['Authorization - Templates'],
        summary='Apply a template to a user',
        description='''
Expand the template into grant and enable changes and commit them through
the same validation and commit pipeline as a manual edit.

Re-applying a template is idempotent: the repeated changes are committed as
audited no-ops.
        ''',
        request=ApplyTemplateSerializer,
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, 422: OpenApiTypes.OBJECT},
    )
)
class ApplyTemplateView(APIView):
    """
    POST /v1/authz/templates/{template_id}/apply
    """
    permission_classes = [IsActiveAccount]

    def post(self, request, template_id):
        serializer = ApplyTemplateSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error(serializer)

        result = AuthorizationService.apply_template(
            template_id,
            serializer.validated_data['target_id'],
            request.user.id,
            origin=origin_from_request(request),
        )
        return Response(
            result.to_dict(),
            status=status.HTTP_200_OK if result.ok else status.HTTP_422_UNPROCESSABLE_ENTITY
        )


@extend_schema_view(
    post=extend_schema(
        tags=['Authorization - Companies'],
        summary='Switch a company module gate',
        description='''
Enable or disable a module for a whole company. Super-admin only.

A disabled gate hides the module from every user of the company regardless
of per-user grants, including core-required modules. Per-user grants are
kept so re-enabling the gate restores them.
        ''',
        request=CompanyModuleSerializer,
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class CompanyModuleView(APIView):
    """
    POST /v1/authz/companies/{company_id}/modules/{module_id}
    """
    permission_classes = [IsActiveAccount]

    def post(self, request, company_id, module_id):
        serializer = CompanyModuleSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error(serializer)

        result = AuthorizationService.set_company_module(
            request.user.id,
            company_id,
            module_id,
            serializer.validated_data['is_enabled'],
            origin=origin_from_request(request),
        )
        return Response(result)


@extend_schema_view(
    get=extend_schema(
        tags=['Authorization - Audit'],
        summary='List audit events',
        description='''
List audit events, newest first.

Admins only see their own company's events. Super-admins see every
company. Plain users are denied.
        ''',
        parameters=[
            OpenApiParameter('date_from', OpenApiTypes.DATETIME, description='Events at or after this time'),
            OpenApiParameter('date_to', OpenApiTypes.DATETIME, description='Events at or before this time'),
            OpenApiParameter('date_range', OpenApiTypes.STR, description='Preset window: 24h, 7d, 30d, 90d'),
            OpenApiParameter('action', OpenApiTypes.STR, description='Audit action'),
            OpenApiParameter('risk_level', OpenApiTypes.STR, description='low, medium or high'),
            OpenApiParameter('company_id', OpenApiTypes.UUID, description='Company filter'),
            OpenApiParameter('search', OpenApiTypes.STR, description='Actor, target, resource or company name'),
        ],
        responses={200: AuditEventSerializer(many=True)},
    )
)
class AuditEventListView(APIView):
    """
    GET /v1/authz/audit-events
    """
    permission_classes = [IsActiveAccount]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        filters = AuditEventFilterSerializer(data=request.query_params)
        if not filters.is_valid():
            return _validation_error(filters)

        events = AuthorizationService.list_audit_events(request.user.id, filters.validated_data)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(events, request)
        serializer = AuditEventSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)
