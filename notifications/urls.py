from rest_framework.routers import DefaultRouter

from notifications.views import NotificationViewSet, StickyNoteViewSet

router = DefaultRouter()
router.register(r"notifications", NotificationViewSet, basename="notification")
router.register(r"sticky-notes", StickyNoteViewSet, basename="sticky-note")

urlpatterns = router.urls
