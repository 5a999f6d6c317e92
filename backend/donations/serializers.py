from rest_framework import serializers

from donation_requests.models import RequestStatus
from donors.models import check_blood_group
from common.errors import ValidationError as BloodGroupError
from .models import BloodRequest, RequestMatch


class BloodRequestSerializer(serializers.ModelSerializer):
    class Meta:
        model = BloodRequest
        fields = '__all__'
        read_only_fields = ['id', 'recipient', 'status', 'created_at', 'expires_at']

    def validate(self, attrs):
        try:
            check_blood_group(attrs.get('blood_type'), attrs.get('rh_factor'))
        except BloodGroupError as exc:
            raise serializers.ValidationError({'blood_type': exc.message})

        # both coordinates or neither
        if (attrs.get('origin_lat') is None) != (attrs.get('origin_lng') is None):
            raise serializers.ValidationError({'origin': 'origin_lat and origin_lng go together'})
        if attrs.get('auto_matching_enabled', True) and attrs.get('origin_lat') is None:
            raise serializers.ValidationError({'origin': 'auto-matched requests need origin coordinates'})
        return attrs

    def create(self, validated_data):
        validated_data.setdefault('status', RequestStatus.OPEN.value)
        return super().create(validated_data)


class RequestMatchSerializer(serializers.ModelSerializer):
    class Meta:
        model = RequestMatch
        fields = '__all__'
        read_only_fields = [f.name for f in RequestMatch._meta.fields]


class RankSerializer(serializers.Serializer):
    max_results = serializers.IntegerField(min_value=1, required=False)


def match_record_data(record):
    """Domain MatchRecord -> response body."""
    return {
        'id': record.id,
        'request': record.request_id,
        'donor': record.donor_id,
        'status': record.status.value,
        'compatibility_score': record.compatibility_score,
        'distance_score': record.distance_score,
        'reputation_score': record.reputation_score,
        'availability_score': record.availability_score,
        'response_time_score': record.response_time_score,
        'fraud_risk_score': record.fraud_risk_score,
        'overall_score': record.overall_score,
        'offered_at': record.offered_at.isoformat(),
        'responded_at': record.responded_at.isoformat() if record.responded_at else None,
        'expires_at': record.expires_at.isoformat(),
    }


def match_offer_data(offer):
    data = match_record_data(offer.match)
    data['distance_km'] = round(offer.distance_km, 3)
    data['model_score'] = offer.model_score
    return data
