from django.urls import path
from .views import CronExpireOrdersView
app_name = "cron"

urlpatterns = [
    path("expire-orders/", CronExpireOrdersView.as_view(), name="expire-orders"),
]
