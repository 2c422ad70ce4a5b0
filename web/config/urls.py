from django.contrib import admin
from django.urls import include, path

from apps.donations.views import StripeWebhookView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("apps.donations.urls")),
    path("webhooks/stripe", StripeWebhookView.as_view(), name="stripe-webhook"),
    path("", include("apps.monitoring.urls")),
]
