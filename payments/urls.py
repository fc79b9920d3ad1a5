from django.urls import path

from . import views

app_name = "payments"
urlpatterns = [
    path("", views.create_order_view, name="create_order"),
    path("verify", views.verify_payment_view, name="verify_payment"),
    path("mine", views.my_orders_view, name="my_orders"),
    path("webhook/razorpay", views.razorpay_webhook_view, name="razorpay_webhook"),
]
