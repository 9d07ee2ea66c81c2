from rest_framework import serializers

from clinic.models import LabOrder, LabTest, Treatment, TreatmentLink, TreatmentProvider
from clinic.serializers.fields import CleanCharField, PageQuerySerializer


class LabOrderCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    doctorId = serializers.IntegerField(required=False)
    serviceIds = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
    notes = CleanCharField(required=False, allow_blank=True, default='')


class LabOrderListQuerySerializer(serializers.Serializer):
    patientId = serializers.IntegerField(required=False, source='patient_pk')
    doctorId = serializers.IntegerField(required=False, source='doctor_pk')
    status = serializers.ChoiceField(choices=LabOrder.STATUS_CHOICES, required=False)
    isPaid = serializers.BooleanField(required=False, allow_null=True, default=None, source='is_paid')


class LabTestStatusQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=LabTest.STATUS_CHOICES, required=False)


class AddLabTestSerializer(serializers.Serializer):
    serviceId = serializers.IntegerField()


class LabResultSerializer(serializers.Serializer):
    resultValue = CleanCharField(max_length=255, source='result_value')
    resultUnit = CleanCharField(max_length=32, required=False, allow_blank=True, source='result_unit')
    referenceRange = CleanCharField(max_length=64, required=False, allow_blank=True, source='reference_range')
    isCritical = serializers.BooleanField(required=False, default=False, source='is_critical')
    notes = CleanCharField(required=False, allow_blank=True)


class AdditionalProviderSerializer(serializers.Serializer):
    providerId = serializers.IntegerField(source='provider_id')
    role = serializers.ChoiceField(choices=TreatmentProvider.ROLE_CHOICES, required=False)


class TreatmentSerializer(serializers.Serializer):
    patientId = serializers.IntegerField(source='patient_id')
    primaryProviderId = serializers.IntegerField(source='primary_provider_id')
    title = CleanCharField(max_length=200)
    description = CleanCharField(required=False, allow_blank=True)
    treatmentType = serializers.ChoiceField(choices=Treatment.TYPE_CHOICES, required=False, source='treatment_type')
    priority = serializers.ChoiceField(choices=Treatment.PRIORITY_CHOICES, required=False)
    chiefComplaint = CleanCharField(required=False, allow_blank=True, source='chief_complaint')
    diagnosis = CleanCharField(required=False, allow_blank=True)
    startDate = serializers.DateTimeField(required=False, source='start_date')
    endDate = serializers.DateTimeField(required=False, allow_null=True, source='end_date')
    additionalProviders = AdditionalProviderSerializer(many=True, required=False, source='additional_providers')


class TreatmentListQuerySerializer(PageQuerySerializer):
    patientId = serializers.IntegerField(required=False, source='patient_pk')
    providerId = serializers.IntegerField(required=False, source='provider_pk')
    status = serializers.ChoiceField(choices=Treatment.STATUS_CHOICES, required=False)
    treatmentType = serializers.ChoiceField(choices=Treatment.TYPE_CHOICES, required=False, source='treatment_type')
    priority = serializers.ChoiceField(choices=Treatment.PRIORITY_CHOICES, required=False)


class TreatmentStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Treatment.STATUS_CHOICES)


class TreatmentProviderSerializer(serializers.Serializer):
    providerId = serializers.IntegerField()
    role = serializers.ChoiceField(choices=TreatmentProvider.ROLE_CHOICES, default=TreatmentProvider.ROLE_CONSULTANT)


class TreatmentLinkSerializer(serializers.Serializer):
    fromTreatmentId = serializers.IntegerField()
    toTreatmentId = serializers.IntegerField()
    linkType = serializers.ChoiceField(choices=TreatmentLink.LINK_CHOICES)
    linkReason = CleanCharField(required=False, allow_blank=True, default='')
    notes = CleanCharField(required=False, allow_blank=True, default='')


class TransferSerializer(serializers.Serializer):
    newProviderId = serializers.IntegerField()
    reason = CleanCharField()
    notes = CleanCharField(required=False, allow_blank=True, default='')
