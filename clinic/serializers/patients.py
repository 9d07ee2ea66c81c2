from rest_framework import serializers

from clinic.models import Patient
from clinic.serializers.fields import CleanCharField, PageQuerySerializer


class PatientWriteSerializer(serializers.Serializer):
    """Registration and update payload; use ``partial=True`` for updates."""
    firstName = CleanCharField(max_length=80, source='first_name')
    lastName = CleanCharField(max_length=80, source='last_name')
    dateOfBirth = serializers.DateField(source='date_of_birth')
    gender = serializers.ChoiceField(choices=Patient.GENDER_CHOICES)
    phoneNumber = CleanCharField(max_length=32, required=False, allow_blank=True, source='phone_number')
    email = serializers.EmailField(required=False, allow_blank=True, allow_null=True)
    address = CleanCharField(required=False, allow_blank=True)
    emergencyContactName = CleanCharField(max_length=120, required=False, allow_blank=True,
                                          source='emergency_contact_name')
    emergencyContactRelationship = CleanCharField(max_length=64, required=False, allow_blank=True,
                                                  source='emergency_contact_relationship')
    emergencyContactPhone = CleanCharField(max_length=32, required=False, allow_blank=True,
                                           source='emergency_contact_phone')
    bloodGroup = serializers.CharField(max_length=12, required=False, allow_blank=True, source='blood_group')
    allergies = CleanCharField(required=False, allow_blank=True)
    genotype = CleanCharField(max_length=8, required=False, allow_blank=True)
    height = CleanCharField(max_length=16, required=False, allow_blank=True)
    insuranceProvider = CleanCharField(max_length=120, required=False, allow_blank=True,
                                       source='insurance_provider')
    insurancePolicyNumber = CleanCharField(max_length=64, required=False, allow_blank=True,
                                           source='insurance_policy_number')
    insuranceGroupNumber = CleanCharField(max_length=64, required=False, allow_blank=True,
                                          source='insurance_group_number')
    isActive = serializers.BooleanField(required=False, source='is_active')

    def validate_email(self, v):
        return v.strip().lower() if v else None


class PatientListQuerySerializer(PageQuerySerializer):
    search = serializers.CharField(required=False, allow_blank=True)
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None)
    sortBy = serializers.CharField(required=False)
    sortOrder = serializers.ChoiceField(choices=['asc', 'desc'], required=False)


class RegistrationFeeSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
