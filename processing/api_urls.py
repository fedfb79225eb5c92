from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register("batches", views.BatchViewSet)

urlpatterns = router.urls
