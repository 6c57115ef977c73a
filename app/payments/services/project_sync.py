"""
Propagation of ledger outcomes to the Project aggregate.

The Payment row is the system of record; the project's payment fields are
a projection of it. Propagation reads the current ledger state and writes
absolute values, so it can be retried or re-driven by the reconciliation
sweep any number of times.

Usage:
    from payments.services import ProjectSyncService

    ProjectSyncService.sync_payment(payment.id)
"""

from __future__ import annotations

import uuid

from django.db import transaction

from core.services import BaseService
from payments.exceptions import PaymentNotFoundError
from payments.models import Payment
from payments.state_machines import PaymentStatus
from projects.models import Project, ProjectPaymentStatus
from projects.services import PaymentOutcome, ProjectService, RefundOutcome


class ProjectSyncService(BaseService):
    """
    Writes a Payment's outcome to its Project.

    Only SUCCEEDED, FAILED and REFUNDED payments have anything to
    propagate. A project settled by one intent is never overwritten by
    another; a second settled intent on the same project is logged as a
    warning and left for manual review.
    """

    PROPAGATED_STATUSES = frozenset(
        {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.REFUNDED}
    )

    @classmethod
    def sync_payment(cls, payment_id: uuid.UUID | str) -> bool:
        """
        Propagate the payment's current state to its project.

        Returns:
            True if the project was written, False if there was nothing to do

        Raises:
            PaymentNotFoundError: No such payment
            NotFoundError: The project is gone
        """
        payment = Payment.objects.select_related("project").filter(pk=payment_id).first()
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )

        if payment.status not in cls.PROPAGATED_STATUSES:
            return False

        if cls._settled_elsewhere(payment, payment.project):
            log = (
                cls.get_logger().info
                if payment.status == PaymentStatus.FAILED
                else cls.get_logger().warning
            )
            log(
                "Skipping payment, project settled by another intent",
                extra={
                    "payment_id": str(payment.id),
                    "project_id": str(payment.project_id),
                    "project_payment_intent_id": payment.project.payment_intent_id,
                },
            )
            return False

        if payment.status == PaymentStatus.REFUNDED:
            ProjectService.update_project_refund(
                payment.project_id,
                RefundOutcome(
                    amount_cents=payment.refund_amount_cents or 0,
                    reason=payment.refund_reason,
                ),
            )
        else:
            ProjectService.update_project_payment_outcome(
                payment.project_id,
                cls.build_outcome(payment),
            )

        cls.get_logger().info(
            "Payment outcome propagated to project",
            extra={
                "payment_id": str(payment.id),
                "project_id": str(payment.project_id),
                "status": payment.status,
            },
        )
        return True

    @classmethod
    def schedule(cls, payment_id: uuid.UUID | str) -> None:
        """
        Queue propagate_project_update once the current transaction commits.

        Nothing is queued if the transaction rolls back. A broker failure
        is logged by Django (robust callback) and left to the sweep.
        """
        from payments.tasks import propagate_project_update

        transaction.on_commit(
            lambda: propagate_project_update.delay(str(payment_id)),
            robust=True,
        )

    @staticmethod
    def build_outcome(payment: Payment) -> PaymentOutcome:
        """Outcome from the stored split; the fee is never recomputed."""
        if payment.status == PaymentStatus.FAILED:
            return PaymentOutcome(
                succeeded=False,
                payment_intent_id=payment.stripe_payment_intent_id,
            )
        return PaymentOutcome(
            succeeded=True,
            payment_intent_id=payment.stripe_payment_intent_id,
            amount_cents=payment.amount_cents,
            currency=payment.currency,
            paid_at=payment.succeeded_at,
            platform_fee_cents=payment.platform_fee_cents,
            expert_payout_cents=payment.expert_payout_cents,
        )

    @staticmethod
    def _settled_elsewhere(payment: Payment, project: Project) -> bool:
        """
        True if the project shows another intent's settlement.

        A refunded project stays open to a new successful payment.
        """
        if not project.payment_intent_id or project.payment_intent_id == (
            payment.stripe_payment_intent_id
        ):
            return False
        if project.payment_status == ProjectPaymentStatus.COMPLETED:
            return True
        return (
            project.payment_status == ProjectPaymentStatus.REFUNDED
            and payment.status != PaymentStatus.SUCCEEDED
        )

    @classmethod
    def project_reflects(cls, payment: Payment, project: Project | None = None) -> bool:
        """
        True if the project already shows this payment's outcome.

        Used by the reconciliation sweep to find drift.
        """
        project = project or payment.project
        intent_id = payment.stripe_payment_intent_id

        if payment.status in cls.PROPAGATED_STATUSES and cls._settled_elsewhere(
            payment, project
        ):
            return True

        if payment.status == PaymentStatus.SUCCEEDED:
            return (
                project.payment_status == ProjectPaymentStatus.COMPLETED
                and project.payment_intent_id == intent_id
                and project.payment_amount_cents == payment.amount_cents
                and project.platform_fee_cents == payment.platform_fee_cents
                and project.expert_payout_cents == payment.expert_payout_cents
            )
        if payment.status == PaymentStatus.FAILED:
            return (
                project.payment_status == ProjectPaymentStatus.FAILED
                and project.payment_intent_id == intent_id
            )
        if payment.status == PaymentStatus.REFUNDED:
            return (
                project.payment_status == ProjectPaymentStatus.REFUNDED
                and project.refund_amount_cents == payment.refund_amount_cents
            )
        return True
