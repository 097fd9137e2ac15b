from rest_framework.routers import DefaultRouter

from inventory.views import InventoryItemViewSet, StockMoveViewSet, VendorViewSet

router = DefaultRouter()
router.register(r"vendors", VendorViewSet, basename="vendor")
router.register(r"inventory-items", InventoryItemViewSet, basename="inventory-item")
router.register(r"stock-moves", StockMoveViewSet, basename="stock-move")

urlpatterns = router.urls
