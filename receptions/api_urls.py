from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register("receptions", views.ReceptionViewSet)
router.register("thresholds", views.QualityThresholdViewSet)
router.register("evaluations", views.QualityEvaluationViewSet)
router.register("lab-samples", views.LaboratorySampleViewSet)
router.register("prices", views.DailyPriceViewSet)

urlpatterns = router.urls
