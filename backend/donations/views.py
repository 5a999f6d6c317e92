import logging

from rest_framework import viewsets, mixins, permissions, status
from rest_framework.decorators import action
from rest_framework.response import Response

from common.errors import MatchingError
from .models import BloodRequest, DonorProfile, RequestMatch
from .serializers import (
    BloodRequestSerializer,
    RankSerializer,
    RequestMatchSerializer,
    match_offer_data,
    match_record_data,
)
from .services import MatchingServices

logger = logging.getLogger(__name__)


def error_response(exc: MatchingError) -> Response:
    return Response(exc.to_dict(), status=exc.status_code)


class IsRecipient(permissions.BasePermission):
    def has_object_permission(self, request, view, obj):
        return obj.recipient_id == request.user.pk


class BloodRequestViewSet(mixins.CreateModelMixin,
                          mixins.RetrieveModelMixin,
                          mixins.ListModelMixin,
                          viewsets.GenericViewSet):
    """
    Recipients create and follow their requests.
    Status is read-only here; only the match lifecycle changes it.
    """
    serializer_class = BloodRequestSerializer
    permission_classes = [permissions.IsAuthenticated, IsRecipient]

    def get_queryset(self):
        return BloodRequest.objects.filter(recipient=self.request.user).order_by('-created_at')

    def perform_create(self, serializer):
        serializer.save(recipient=self.request.user)

    @action(detail=True, methods=['post'])
    def rank(self, request, pk=None):
        """
        Rank compatible donors and send offers to the best ones.
        """
        blood_request = self.get_object()
        params = RankSerializer(data=request.data)
        params.is_valid(raise_exception=True)

        services = MatchingServices()
        try:
            offers = services.dispatcher_for(blood_request.id).dispatch_request(
                blood_request.id, params.validated_data.get('max_results')
            )
        except MatchingError as exc:
            return error_response(exc)

        return Response({'offers': [match_offer_data(o) for o in offers]}, status=status.HTTP_201_CREATED)


class MatchViewSet(viewsets.GenericViewSet):
    """
    Offers seen by donors (their own) and recipients (offers on their requests).
    accept / reject are donor actions; the acting donor is request.user's profile.
    """
    serializer_class = RequestMatchSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        return (
            RequestMatch.objects.filter(donor__user=user) | RequestMatch.objects.filter(request__recipient=user)
        ).distinct()

    def retrieve(self, request, pk=None):
        # visibility check before the lifecycle read
        self.get_object()
        try:
            record = MatchingServices().lifecycle.get_match(pk)
        except MatchingError as exc:
            return error_response(exc)
        return Response(match_record_data(record))

    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        donor = self._acting_donor(request)
        if donor is None:
            return Response({"code": "FORBIDDEN", "error": "No donor profile"}, status=status.HTTP_403_FORBIDDEN)

        try:
            record = MatchingServices().dispatcher_for().accept_offer(pk, str(donor.pk))
        except MatchingError as exc:
            return error_response(exc)
        return Response(match_record_data(record))

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        donor = self._acting_donor(request)
        if donor is None:
            return Response({"code": "FORBIDDEN", "error": "No donor profile"}, status=status.HTTP_403_FORBIDDEN)

        try:
            record = MatchingServices().dispatcher_for().reject_offer(pk, str(donor.pk))
        except MatchingError as exc:
            return error_response(exc)
        return Response(match_record_data(record))

    @staticmethod
    def _acting_donor(request):
        return DonorProfile.objects.filter(user=request.user).first()
