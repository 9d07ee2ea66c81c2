import bleach
from rest_framework import serializers


def clean_text(value):
    if value is None:
        return value
    return bleach.clean(str(value).strip(), tags=[], strip=True)


class CleanCharField(serializers.CharField):
    """CharField whose value is stripped of any markup."""

    def to_internal_value(self, data):
        return clean_text(super().to_internal_value(data))


class PageQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(required=False, min_value=1)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=200)


class DateRangeQuerySerializer(serializers.Serializer):
    startDate = serializers.DateTimeField(required=False, source='start')
    endDate = serializers.DateTimeField(required=False, source='end')
