from django.urls import path

from .views import OwnedProductsView

app_name = "accounts"

urlpatterns = [
    path("products/", OwnedProductsView.as_view(), name="owned-products"),
]
