from rest_framework.routers import DefaultRouter

from procurement.views import CostComparisonViewSet, PurchaseOrderViewSet, PurchaseRequestViewSet, RequestNoteViewSet

router = DefaultRouter()
router.register(r"requests", PurchaseRequestViewSet, basename="purchase-request")
router.register(r"request-notes", RequestNoteViewSet, basename="request-note")
router.register(r"cost-comparisons", CostComparisonViewSet, basename="cost-comparison")
router.register(r"purchase-orders", PurchaseOrderViewSet, basename="purchase-order")

urlpatterns = router.urls
