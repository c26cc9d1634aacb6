from rest_framework.routers import DefaultRouter

from visits.views import CustomerViewSet, VisitViewSet

router = DefaultRouter()
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"visits", VisitViewSet, basename="visit")

urlpatterns = router.urls
