from django.urls import path
from .views import AdminApproveView, AdminOrderView
app_name = "admin-orders"

urlpatterns = [
    path("<uuid:oid>/", AdminOrderView.as_view(), name="update"),
    path("<uuid:oid>/approve/", AdminApproveView.as_view(), name="approve"),
]
