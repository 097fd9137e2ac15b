from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import AuditLogViewSet, ProfileView, SiteViewSet, UserViewSet

router = DefaultRouter()
router.register(r"users", UserViewSet, basename="user")
router.register(r"sites", SiteViewSet, basename="site")
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("me/", ProfileView.as_view(), name="profile"),
]
