"""
Serializers for the authorization API.
"""
from rest_framework import serializers

from apps.authz.changes import Change, ChangeType, PendingChange
from apps.authz.models import AuditAction, AuditEvent, PermissionTemplate
from apps.authz.risk import RISK_LEVELS, risk_level
from apps.authz.roles import Role
from apps.authz.audit import DATE_RANGES


class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.lower()


class ChangeSerializer(serializers.Serializer):
    """
    A single access change. ``key`` names the permission or module;
    ``value`` carries the new role or company id.
    """

    type = serializers.ChoiceField(choices=[t.value for t in ChangeType])
    key = serializers.CharField(required=False, allow_blank=True, default='')
    value = serializers.CharField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        change_type = ChangeType(attrs['type'])
        if change_type.kind in ('permission', 'module') and not attrs.get('key'):
            raise serializers.ValidationError({'key': 'This field is required for this change type.'})
        if change_type == ChangeType.CHANGE_ROLE and not attrs.get('value'):
            raise serializers.ValidationError({'value': 'A role is required.'})
        return attrs

    def to_change(self, data=None) -> Change:
        return Change.from_dict(data if data is not None else self.validated_data)


class ValidateChangeSerializer(serializers.Serializer):
    target_id = serializers.UUIDField()
    change = ChangeSerializer()


class PendingChangeSerializer(serializers.Serializer):
    target_id = serializers.UUIDField()
    change = ChangeSerializer()
    baseline = serializers.JSONField(required=False, allow_null=True)

    def to_pending(self, data) -> PendingChange:
        return PendingChange(
            target_id=str(data['target_id']),
            change=Change.from_dict(data['change']),
            baseline=data.get('baseline'),
        )


class CommitChangesSerializer(serializers.Serializer):
    changes = PendingChangeSerializer(many=True, allow_empty=False)


class PermissionTemplateSerializer(serializers.ModelSerializer):
    """Serializer for PermissionTemplate model."""

    created_by_email = serializers.EmailField(source='created_by.email', read_only=True, default=None)

    class Meta:
        model = PermissionTemplate
        fields = [
            'id', 'name', 'display_name', 'description', 'target_role',
            'permission_keys', 'module_ids', 'is_system', 'company',
            'created_by_email', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class PermissionTemplateWriteSerializer(serializers.Serializer):
    """Input for creating or updating a custom template."""

    name = serializers.SlugField(required=False, allow_blank=True, max_length=100)
    display_name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    target_role = serializers.ChoiceField(choices=Role.choices, default=Role.USER)
    permission_keys = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    module_ids = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    company_id = serializers.UUIDField(required=False, allow_null=True)


class ApplyTemplateSerializer(serializers.Serializer):
    target_id = serializers.UUIDField()


class CompanyModuleSerializer(serializers.Serializer):
    is_enabled = serializers.BooleanField()


class AuditEventSerializer(serializers.ModelSerializer):
    """Serializer for AuditEvent model."""

    actor_email = serializers.EmailField(source='actor.email', read_only=True, default=None)
    target_email = serializers.EmailField(source='target_user.email', read_only=True, default=None)
    company_name = serializers.CharField(source='company.name', read_only=True, default=None)
    risk_level = serializers.SerializerMethodField()

    class Meta:
        model = AuditEvent
        fields = [
            'id', 'occurred_at', 'action', 'actor', 'actor_email',
            'target_user', 'target_email', 'company', 'company_name',
            'resource', 'before', 'after', 'details',
            'risk_score', 'risk_level', 'is_noop',
            'ip_address', 'user_agent', 'request_id',
        ]
        read_only_fields = fields

    def get_risk_level(self, obj) -> str:
        return risk_level(obj.risk_score)


class AuditEventFilterSerializer(serializers.Serializer):
    """Query parameters accepted by the audit listing."""

    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)
    date_range = serializers.ChoiceField(choices=list(DATE_RANGES), required=False)
    action = serializers.ChoiceField(choices=AuditAction.choices, required=False)
    risk_level = serializers.ChoiceField(choices=RISK_LEVELS, required=False)
    company_id = serializers.UUIDField(required=False)
    search = serializers.CharField(required=False, allow_blank=True)
