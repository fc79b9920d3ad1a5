from django.contrib import admin
from django.urls import include, path

from . import views

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/orders/", include("payments.urls")),
]

handler404 = views.error_404_view
