"""
URL configuration for the payments app.

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments import views
from payments.webhooks.views import stripe_webhook

app_name = "payments"

urlpatterns = [
    path(
        "create-payment-intent/",
        views.CreatePaymentIntentView.as_view(),
        name="create_payment_intent",
    ),
    path(
        "confirm-payment/<str:intent_id>/",
        views.ConfirmPaymentView.as_view(),
        name="confirm_payment",
    ),
    path("refund/<uuid:payment_id>/", views.RefundView.as_view(), name="refund"),
    path("stats/", views.PaymentStatsView.as_view(), name="stats"),
    path("history/", views.PaymentHistoryView.as_view(), name="history"),
    path(
        "payment-methods/",
        views.PaymentMethodListView.as_view(),
        name="payment_methods",
    ),
    path(
        "payment-methods/<str:pm_id>/",
        views.PaymentMethodDetailView.as_view(),
        name="payment_method_detail",
    ),
    path(
        "attach-payment-method/",
        views.AttachPaymentMethodView.as_view(),
        name="attach_payment_method",
    ),
    path("setup-intent/", views.SetupIntentView.as_view(), name="setup_intent"),
    path("config/", views.StripeConfigView.as_view(), name="config"),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
