from django.urls import include, path

urlpatterns = [
    path("", include("apps.monitoring.urls")),
    path("api/orders/", include("apps.orders.urls")),
    path("api/payment/", include("apps.orders.payment_urls")),
    path("api/admin/orders/", include("apps.orders.admin_urls")),
    path("api/cron/", include("apps.orders.cron_urls")),
    path("api/me/", include("apps.accounts.urls")),
]
