from rest_framework import serializers

from clinic.models import CashTransaction, Invoice, Payment, PettyCashRequest
from clinic.serializers.fields import CleanCharField, DateRangeQuerySerializer

MONEY = dict(max_digits=12, decimal_places=2)


class ChargeSerializer(serializers.Serializer):
    serviceId = serializers.IntegerField(required=False, allow_null=True, source='service_id')
    description = CleanCharField(max_length=255, required=False, allow_blank=True)
    quantity = serializers.IntegerField(min_value=1, default=1)
    unitPrice = serializers.DecimalField(required=False, allow_null=True, min_value=0, source='unit_price', **MONEY)

    def validate(self, attrs):
        if not attrs.get('service_id') and not attrs.get('description'):
            raise serializers.ValidationError('A charge needs a service or a description')
        if not attrs.get('service_id') and attrs.get('unit_price') is None:
            raise serializers.ValidationError('A charge without a service needs a unit price')
        return attrs


class InvoiceCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField(source='patient_pk')
    charges = ChargeSerializer(many=True, required=False)
    status = serializers.ChoiceField(choices=[Invoice.STATUS_DRAFT, Invoice.STATUS_PENDING], required=False)
    dueDate = serializers.DateTimeField(required=False, allow_null=True, source='due_date')
    notes = CleanCharField(required=False, allow_blank=True)


class InvoiceUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Invoice.STATUS_CHOICES, required=False)
    dueDate = serializers.DateTimeField(required=False, allow_null=True, source='due_date')
    notes = CleanCharField(required=False, allow_blank=True)


class InvoiceListQuerySerializer(DateRangeQuerySerializer):
    patientId = serializers.IntegerField(required=False, source='patient_pk')
    status = serializers.ChoiceField(choices=Invoice.STATUS_CHOICES, required=False)
    search = serializers.CharField(required=False, allow_blank=True)


class ReasonSerializer(serializers.Serializer):
    reason = CleanCharField(required=False, allow_blank=True)


class PaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**MONEY)
    method = serializers.ChoiceField(choices=Payment.METHOD_CHOICES, default='CASH')
    reference = CleanCharField(max_length=120, required=False, allow_blank=True, default='')
    notes = CleanCharField(required=False, allow_blank=True, default='')


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**MONEY)
    reason = CleanCharField()
    notes = CleanCharField(required=False, allow_blank=True, default='')


class CashPaymentSerializer(serializers.Serializer):
    invoiceId = serializers.IntegerField(source='invoice_pk')
    amount = serializers.DecimalField(**MONEY)
    reference = CleanCharField(max_length=120, required=False, allow_blank=True, default='')
    notes = CleanCharField(required=False, allow_blank=True, default='')


class CashTransactionSerializer(serializers.Serializer):
    transactionType = serializers.ChoiceField(choices=CashTransaction.TYPE_CHOICES, source='transaction_type')
    amount = serializers.DecimalField(**MONEY)
    description = CleanCharField(max_length=255)
    patientId = serializers.IntegerField(required=False, allow_null=True, source='patient_pk')
    paymentMethod = serializers.ChoiceField(choices=Payment.METHOD_CHOICES, default='CASH', source='payment_method')


class CashListQuerySerializer(DateRangeQuerySerializer):
    transactionType = serializers.ChoiceField(choices=CashTransaction.TYPE_CHOICES, required=False,
                                              source='transaction_type')
    cashierId = serializers.IntegerField(required=False, source='cashier_pk')


class PettyCashSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**MONEY)
    purpose = CleanCharField(max_length=255)
    description = CleanCharField(required=False, allow_blank=True, default='')
    expectedDate = serializers.DateField(required=False, allow_null=True, default=None, source='expected_date')
    notes = CleanCharField(required=False, allow_blank=True, default='')


class PettyCashListQuerySerializer(DateRangeQuerySerializer):
    requesterId = serializers.IntegerField(required=False, source='requester_pk')
    status = serializers.ChoiceField(choices=PettyCashRequest.STATUS_CHOICES, required=False)


class RejectionSerializer(serializers.Serializer):
    reason = CleanCharField()


class DayQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False, allow_null=True, default=None)
    cashierId = serializers.IntegerField(required=False, source='cashier_pk')


class PeriodQuerySerializer(serializers.Serializer):
    startDate = serializers.DateField(source='start_date')
    endDate = serializers.DateField(source='end_date')
