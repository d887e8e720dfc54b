from django.urls import path
from .views import PaymentCheckStatusView, PaymentWebhookView
app_name = "payment"

urlpatterns = [
    path("check-status/", PaymentCheckStatusView.as_view(), name="check-status"),
    path("webhook/", PaymentWebhookView.as_view(), name="webhook"),
]
