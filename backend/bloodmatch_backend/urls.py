from django.urls import path, include
from rest_framework.routers import DefaultRouter
from donations.views import BloodRequestViewSet, MatchViewSet

router = DefaultRouter()
router.register(r'requests', BloodRequestViewSet, basename='request')
router.register(r'matches', MatchViewSet, basename='match')

urlpatterns = [
    path('api/v1/', include(router.urls)),
]
