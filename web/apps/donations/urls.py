from django.urls import path

from .views import (
    CheckoutView,
    ConfirmView,
    DailyGivingCheckoutView,
    DailyGivingPlanView,
    GiftAidAdminView,
    OfflineDonationView,
    OrderStatusView,
    RefundDonationView,
    ResumeCheckoutView,
)

app_name = "donations"

urlpatterns = [
    path("checkout", CheckoutView.as_view(), name="checkout"),
    path("checkout/confirm", ConfirmView.as_view(), name="checkout-confirm"),
    path("checkout/resume", ResumeCheckoutView.as_view(), name="checkout-resume"),
    path("checkout/orders/<str:order_number>", OrderStatusView.as_view(), name="order-status"),
    path("daily-giving/plan", DailyGivingPlanView.as_view(), name="daily-giving-plan"),
    path("daily-giving/checkout", DailyGivingCheckoutView.as_view(), name="daily-giving-checkout"),
    path("admin/giftaid", GiftAidAdminView.as_view(), name="admin-giftaid"),
    path("admin/donations", OfflineDonationView.as_view(), name="admin-donations"),
    path(
        "admin/donations/<uuid:donation_id>/refund", RefundDonationView.as_view(), name="admin-donation-refund"
    ),
]
