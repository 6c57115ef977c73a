"""
DRF views for the payments app.

Thin route layer over the payment services. Domain errors are returned as
``BaseApplicationError.to_dict()`` with the error's own HTTP status.

Endpoints:
    POST /api/v1/payments/create-payment-intent/ - Create an intent for a project
    POST /api/v1/payments/confirm-payment/{intent_id}/ - Confirm an intent
    POST /api/v1/payments/refund/{payment_id}/ - Refund a succeeded payment
    GET /api/v1/payments/stats/ - Payment statistics
    GET /api/v1/payments/history/ - Paginated payment history
    GET /api/v1/payments/payment-methods/ - Saved cards
    DELETE /api/v1/payments/payment-methods/{pm_id}/ - Detach a card
    POST /api/v1/payments/attach-payment-method/ - Attach a card
    POST /api/v1/payments/setup-intent/ - Start saving a card
    GET /api/v1/payments/config/ - Publishable key

Security:
    - All endpoints require authentication except config and the webhook
    - Refunds are limited to the paying client or an admin
"""

from __future__ import annotations

import logging

from django.conf import settings
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError, PermissionDeniedError
from payments.exceptions import PaymentNotFoundError, PaymentValidationError
from payments.serializers import (
    AttachPaymentMethodSerializer,
    CreatePaymentIntentSerializer,
    PaymentHistorySerializer,
    PaymentIntentCreatedSerializer,
    PaymentIntentSerializer,
    PaymentMethodSerializer,
    PaymentStatsSerializer,
    RefundRequestSerializer,
    RefundResponseSerializer,
    SetupIntentSerializer,
    StripeConfigSerializer,
)
from payments.services import PaymentMethodService, PaymentOrchestrator, RefundService
from payments.services.payment_orchestrator import ROLE_CLIENT, ROLE_EXPERT

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: OpenApiResponse(description="Validation error"),
    403: OpenApiResponse(description="Not allowed for this user"),
    404: OpenApiResponse(description="Not found"),
    409: OpenApiResponse(description="Conflicting state or concurrent request"),
    502: OpenApiResponse(description="Stripe error"),
}


def _error_response(e: BaseApplicationError) -> Response:
    return Response(e.to_dict(), status=e.http_status)


def _role_for(user) -> str:
    return ROLE_EXPERT if user.is_expert else ROLE_CLIENT


def _query_int(request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise PaymentValidationError(
            f"{name} must be an integer",
            error_code=f"INVALID_{name.upper()}",
            details={name: raw},
        )


class CreatePaymentIntentView(APIView):
    """
    POST /api/v1/payments/create-payment-intent/

    The authenticated user pays for the project and must be its client.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payment_intent",
        summary="Create payment intent",
        request=CreatePaymentIntentSerializer,
        responses={201: PaymentIntentCreatedSerializer, **ERROR_RESPONSES},
        tags=["Payments"],
    )
    def post(self, request):
        serializer = CreatePaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            created = PaymentOrchestrator.create_payment_intent(
                project_id=data["project_id"],
                client_id=request.user.id,
                amount_cents=data["amount_cents"],
                currency=data.get("currency") or None,
            )
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(
            PaymentIntentCreatedSerializer(created).data,
            status=status.HTTP_201_CREATED,
        )


class ConfirmPaymentView(APIView):
    """POST /api/v1/payments/confirm-payment/{intent_id}/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_payment_intent",
        summary="Confirm payment intent",
        request=None,
        responses={200: PaymentIntentSerializer, **ERROR_RESPONSES},
        tags=["Payments"],
    )
    def post(self, request, intent_id: str):
        try:
            payment = PaymentOrchestrator.get_payment_by_intent(intent_id)
            if payment is None:
                raise PaymentNotFoundError(
                    f"No payment for intent {intent_id}",
                    details={"payment_intent_id": intent_id},
                )
            if payment.client_id != request.user.id and not request.user.is_admin:
                raise PermissionDeniedError(
                    "Only the paying client can confirm this payment",
                    error_code="NOT_PAYMENT_CLIENT",
                )
            intent = PaymentOrchestrator.confirm_payment_intent(intent_id)
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(PaymentIntentSerializer(intent).data)


class RefundView(APIView):
    """
    POST /api/v1/payments/refund/{payment_id}/

    Only the paying client or an admin may refund.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="refund_payment",
        summary="Refund payment",
        request=RefundRequestSerializer,
        responses={200: RefundResponseSerializer, **ERROR_RESPONSES},
        tags=["Payments"],
    )
    def post(self, request, payment_id):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            payment = PaymentOrchestrator.get_payment(payment_id)
            if payment.client_id != request.user.id and not request.user.is_admin:
                raise PermissionDeniedError(
                    "Only the paying client or an admin can refund this payment",
                    error_code="NOT_PAYMENT_CLIENT",
                    details={"payment_id": str(payment_id)},
                )
            result = RefundService.create_refund(
                payment_id,
                amount_cents=data.get("amount_cents"),
                reason=data.get("reason"),
            )
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(RefundResponseSerializer(result).data)


class PaymentStatsView(APIView):
    """GET /api/v1/payments/stats/ - as expert for experts, as client otherwise."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment_stats",
        summary="Payment statistics",
        responses={200: PaymentStatsSerializer},
        tags=["Payments"],
    )
    def get(self, request):
        try:
            stats = PaymentOrchestrator.get_payment_stats(
                request.user.id, _role_for(request.user)
            )
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(PaymentStatsSerializer(stats.to_dict()).data)


class PaymentHistoryView(APIView):
    """GET /api/v1/payments/history/?page=&limit="""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment_history",
        summary="Payment history",
        parameters=[
            OpenApiParameter(
                name="page",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Page number (1-indexed)",
                required=False,
            ),
            OpenApiParameter(
                name="limit",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Items per page (max 100)",
                required=False,
            ),
        ],
        responses={200: PaymentHistorySerializer, 400: ERROR_RESPONSES[400]},
        tags=["Payments"],
    )
    def get(self, request):
        try:
            history = PaymentOrchestrator.get_payment_history(
                request.user.id,
                _role_for(request.user),
                page=_query_int(request, "page", 1),
                limit=_query_int(request, "limit", 10),
            )
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(PaymentHistorySerializer(history).data)


class PaymentMethodListView(APIView):
    """GET /api/v1/payments/payment-methods/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_payment_methods",
        summary="List saved cards",
        responses={200: PaymentMethodSerializer(many=True), 502: ERROR_RESPONSES[502]},
        tags=["Payment Methods"],
    )
    def get(self, request):
        try:
            methods = PaymentMethodService.list_payment_methods(request.user)
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(PaymentMethodSerializer(methods, many=True).data)


class PaymentMethodDetailView(APIView):
    """DELETE /api/v1/payments/payment-methods/{pm_id}/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="detach_payment_method",
        summary="Detach a saved card",
        responses={200: PaymentMethodSerializer, **ERROR_RESPONSES},
        tags=["Payment Methods"],
    )
    def delete(self, request, pm_id: str):
        try:
            method = PaymentMethodService.detach_payment_method(request.user, pm_id)
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(PaymentMethodSerializer(method).data)


class AttachPaymentMethodView(APIView):
    """POST /api/v1/payments/attach-payment-method/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="attach_payment_method",
        summary="Attach a card",
        request=AttachPaymentMethodSerializer,
        responses={200: PaymentMethodSerializer, **ERROR_RESPONSES},
        tags=["Payment Methods"],
    )
    def post(self, request):
        serializer = AttachPaymentMethodSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            method = PaymentMethodService.attach_payment_method(
                request.user, serializer.validated_data["payment_method_id"]
            )
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(PaymentMethodSerializer(method).data)


class SetupIntentView(APIView):
    """POST /api/v1/payments/setup-intent/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_setup_intent",
        summary="Create setup intent",
        request=None,
        responses={201: SetupIntentSerializer, **ERROR_RESPONSES},
        tags=["Payment Methods"],
    )
    def post(self, request):
        try:
            setup = PaymentMethodService.create_setup_intent(request.user)
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(SetupIntentSerializer(setup).data, status=status.HTTP_201_CREATED)


class StripeConfigView(APIView):
    """GET /api/v1/payments/config/ - public."""

    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(
        operation_id="get_stripe_config",
        summary="Stripe publishable key",
        responses={200: StripeConfigSerializer},
        tags=["Payments"],
    )
    def get(self, request):
        return Response(
            StripeConfigSerializer({"publishable_key": settings.STRIPE_PUBLISHABLE_KEY}).data
        )
