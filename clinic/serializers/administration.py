"""
Payloads for departments, the service catalogue, staff, roles and
permission management (direct codes, temporary grants, templates and
permission requests).
"""
from rest_framework import serializers

from clinic.models import PermissionRequest
from clinic.serializers.fields import CleanCharField, PageQuerySerializer

MONEY = dict(max_digits=12, decimal_places=2, min_value=0)


class DepartmentSerializer(serializers.Serializer):
    name = CleanCharField(max_length=120)
    code = CleanCharField(max_length=20)
    description = CleanCharField(required=False, allow_blank=True)
    isActive = serializers.BooleanField(required=False, source='is_active')

    def validate_code(self, v):
        return v.upper()


class DepartmentListQuerySerializer(PageQuerySerializer):
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None)
    search = serializers.CharField(required=False, allow_blank=True)
    sortBy = serializers.CharField(required=False)
    sortOrder = serializers.ChoiceField(choices=['asc', 'desc'], required=False)


class CategorySerializer(serializers.Serializer):
    name = CleanCharField(max_length=120)
    description = CleanCharField(required=False, allow_blank=True, default='')
    isActive = serializers.BooleanField(required=False, source='is_active')


class ServiceSerializer(serializers.Serializer):
    categoryId = serializers.IntegerField(source='category_id')
    departmentId = serializers.IntegerField(required=False, allow_null=True, source='department_id')
    name = CleanCharField(max_length=150)
    serviceCode = CleanCharField(max_length=32, required=False, allow_null=True, source='service_code')
    description = CleanCharField(required=False, allow_blank=True)
    basePrice = serializers.DecimalField(source='base_price', **MONEY)
    requiresPrePayment = serializers.BooleanField(required=False, source='requires_pre_payment')
    isActive = serializers.BooleanField(required=False, source='is_active')


class ServiceListQuerySerializer(serializers.Serializer):
    categoryId = serializers.IntegerField(required=False, source='category_pk')
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None, source='is_active')
    search = serializers.CharField(required=False, allow_blank=True)
    requiresPrePayment = serializers.BooleanField(required=False, allow_null=True, default=None,
                                                  source='requires_pre_payment')


class PriceSerializer(serializers.Serializer):
    price = serializers.DecimalField(**MONEY)


class StaffSerializer(serializers.Serializer):
    employeeId = CleanCharField(max_length=32, source='employee_id')
    email = serializers.EmailField()
    firstName = CleanCharField(max_length=150, source='first_name')
    lastName = CleanCharField(max_length=150, source='last_name')
    departmentId = serializers.IntegerField(required=False, allow_null=True, source='department_id')
    specialization = CleanCharField(max_length=120, required=False, allow_blank=True)
    licenseNumber = CleanCharField(max_length=64, required=False, allow_blank=True, source='license_number')
    phoneNumber = CleanCharField(max_length=32, required=False, allow_blank=True, source='phone_number')
    serviceProvider = serializers.BooleanField(required=False, source='is_service_provider')
    isActive = serializers.BooleanField(required=False, source='is_active')
    hireDate = serializers.DateField(required=False, allow_null=True, source='hire_date')


class StaffListQuerySerializer(PageQuerySerializer):
    search = serializers.CharField(required=False, allow_blank=True)
    departmentId = serializers.IntegerField(required=False, source='department_pk')
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None, source='is_active')
    serviceProvider = serializers.BooleanField(required=False, allow_null=True, default=None,
                                               source='service_provider')


class ServiceProviderFlagSerializer(serializers.Serializer):
    serviceProvider = serializers.BooleanField()


class RoleSerializer(serializers.Serializer):
    name = CleanCharField(max_length=64)
    description = CleanCharField(required=False, allow_blank=True, default='')
    permissions = serializers.ListField(child=serializers.CharField(max_length=100), required=False, default=list)
    isActive = serializers.BooleanField(required=False, source='is_active')


class RoleAssignmentSerializer(serializers.Serializer):
    roleId = serializers.IntegerField()


class PermissionCodesSerializer(serializers.Serializer):
    permissions = serializers.ListField(child=serializers.CharField(max_length=100), allow_empty=True)


class PermissionCodeSerializer(serializers.Serializer):
    permission = serializers.CharField(max_length=100)


class PermissionCheckSerializer(serializers.Serializer):
    permissions = serializers.ListField(child=serializers.CharField(max_length=100), allow_empty=False)
    mode = serializers.ChoiceField(choices=['any', 'all'], default='any')


class TemporaryGrantSerializer(serializers.Serializer):
    userId = serializers.IntegerField()
    permission = serializers.CharField(max_length=100)
    expiresAt = serializers.DateTimeField()
    reason = CleanCharField(required=False, allow_blank=True, default='')


class TemporaryUpdateSerializer(serializers.Serializer):
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None)
    reason = CleanCharField(required=False, allow_null=True, allow_blank=True, default=None)


class TemporaryExtendSerializer(serializers.Serializer):
    newExpiresAt = serializers.DateTimeField()
    reason = CleanCharField(required=False, allow_blank=True, default='')


class TemporaryListQuerySerializer(serializers.Serializer):
    userId = serializers.IntegerField(required=False, source='user_pk')
    permission = serializers.CharField(required=False)
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None, source='is_active')
    grantedBy = serializers.IntegerField(required=False, source='granted_by_pk')


class PermissionTemplateSerializer(serializers.Serializer):
    name = CleanCharField(max_length=100)
    description = CleanCharField(required=False, allow_blank=True, default='')
    category = CleanCharField(max_length=64, required=False, default='General')
    permissions = serializers.ListField(child=serializers.CharField(max_length=100), allow_empty=False)
    isSystem = serializers.BooleanField(required=False, default=False, source='is_system')
    version = serializers.CharField(max_length=16, required=False, default='1.0.0')


class CustomizationSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=['ADD', 'REMOVE'])
    permission = serializers.CharField(max_length=100)


class PermissionPresetSerializer(serializers.Serializer):
    name = CleanCharField(max_length=100)
    description = CleanCharField(required=False, allow_blank=True, default='')
    templateId = serializers.IntegerField(source='template_pk')
    customizations = CustomizationSerializer(many=True, required=False, default=list)
    isActive = serializers.BooleanField(required=False, source='is_active')


class ApplyTemplateSerializer(serializers.Serializer):
    userId = serializers.IntegerField(source='user_pk')
    templateId = serializers.IntegerField(required=False, allow_null=True, default=None, source='template_pk')
    presetId = serializers.IntegerField(required=False, allow_null=True, default=None, source='preset_pk')
    replace = serializers.BooleanField(required=False, default=False)


class PermissionRequestSerializer(serializers.Serializer):
    permission = serializers.CharField(max_length=100)
    reason = CleanCharField()
    urgency = serializers.ChoiceField(choices=PermissionRequest.URGENCY_CHOICES, default='MEDIUM')
    expiresAt = serializers.DateTimeField(required=False, allow_null=True, default=None, source='expires_at')
    approverIds = serializers.ListField(child=serializers.IntegerField(), required=False, default=list,
                                        source='approver_ids')


class PermissionRequestUpdateSerializer(serializers.Serializer):
    reason = CleanCharField(required=False, allow_null=True, default=None)
    urgency = serializers.ChoiceField(choices=PermissionRequest.URGENCY_CHOICES, required=False, allow_null=True,
                                      default=None)
    expiresAt = serializers.DateTimeField(required=False, allow_null=True, default=None, source='expires_at')


class DecisionSerializer(serializers.Serializer):
    comments = CleanCharField(required=False, allow_blank=True, default='')


class PermissionRequestQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=PermissionRequest.STATUS_CHOICES, required=False)
    urgency = serializers.ChoiceField(choices=PermissionRequest.URGENCY_CHOICES, required=False)
    requesterId = serializers.IntegerField(required=False, source='requester_pk')
    approverId = serializers.IntegerField(required=False, source='approver_pk')
