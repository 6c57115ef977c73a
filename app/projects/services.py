"""
Project services.

ProjectService is the project store payments writes settlement results to.
Every update sets fields to absolute values, so replaying the same outcome
leaves the project unchanged.

Related files:
    - payments/services/project_sync.py: builds outcomes from the ledger
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService
from projects.models import Project, ProjectPaymentStatus, ProjectStatus


@dataclass(frozen=True)
class PaymentOutcome:
    """
    Settled result of a payment.

    Attributes:
        succeeded: True for a successful payment, False for a failed one
        payment_intent_id: Stripe PaymentIntent ID
        amount_cents: Amount in minor units (successful payments)
        currency: ISO currency code (successful payments)
        paid_at: When the payment succeeded
        platform_fee_cents: Fee captured at creation
        expert_payout_cents: Payout captured at creation
    """

    succeeded: bool
    payment_intent_id: str
    amount_cents: int | None = None
    currency: str = ""
    paid_at: datetime | None = None
    platform_fee_cents: int | None = None
    expert_payout_cents: int | None = None


@dataclass(frozen=True)
class RefundOutcome:
    """Refund recorded on the ledger."""

    amount_cents: int
    reason: str = ""


class ProjectService(BaseService):
    """
    Reads projects and applies payment outcomes to them.

    Usage:
        project = ProjectService.get_project(project_id)
        ProjectService.update_project_payment_outcome(project.id, outcome)
    """

    PAYMENT_METHOD = "stripe"

    @classmethod
    def get_project(cls, project_id) -> Project:
        """
        Raises:
            NotFoundError: If the project does not exist
        """
        project = (
            Project.objects.select_related("client", "expert")
            .filter(pk=project_id)
            .first()
        )
        if project is None:
            raise NotFoundError(
                f"Project {project_id} not found",
                error_code="PROJECT_NOT_FOUND",
                details={"project_id": str(project_id)},
            )
        return project

    @classmethod
    def update_project_payment_outcome(cls, project_id, outcome: PaymentOutcome) -> Project:
        """
        Write a settled payment outcome to the project.

        Success moves the project to in_progress and records amount, currency,
        the stored fee split, the payment date and method. Failure only marks
        the payment status failed.

        Raises:
            NotFoundError: If the project does not exist
            ValidationError: If a successful outcome lacks amount data
        """
        if outcome.succeeded and (outcome.amount_cents is None or not outcome.currency):
            raise ValidationError(
                "Successful payment outcome requires amount and currency",
                error_code="INCOMPLETE_OUTCOME",
                details={"payment_intent_id": outcome.payment_intent_id},
            )

        with cls.atomic():
            project = cls._lock(project_id)

            if outcome.succeeded:
                project.status = ProjectStatus.IN_PROGRESS
                project.payment_status = ProjectPaymentStatus.COMPLETED
                project.payment_intent_id = outcome.payment_intent_id
                project.payment_amount_cents = outcome.amount_cents
                project.payment_currency = outcome.currency
                project.payment_date = outcome.paid_at
                project.platform_fee_cents = outcome.platform_fee_cents
                project.expert_payout_cents = outcome.expert_payout_cents
                project.payment_method = cls.PAYMENT_METHOD
            else:
                project.payment_status = ProjectPaymentStatus.FAILED
                project.payment_intent_id = outcome.payment_intent_id

            project.save()

        cls.get_logger().info(
            "Project payment outcome applied",
            extra={
                "project_id": str(project_id),
                "payment_intent_id": outcome.payment_intent_id,
                "payment_status": project.payment_status,
            },
        )
        return project

    @classmethod
    def update_project_refund(cls, project_id, refund: RefundOutcome) -> Project:
        """
        Mark the project's payment refunded.

        Raises:
            NotFoundError: If the project does not exist
        """
        with cls.atomic():
            project = cls._lock(project_id)
            project.payment_status = ProjectPaymentStatus.REFUNDED
            project.refund_amount_cents = refund.amount_cents
            project.refund_reason = refund.reason or ""
            project.save()

        cls.get_logger().info(
            "Project refund applied",
            extra={
                "project_id": str(project_id),
                "refund_amount_cents": refund.amount_cents,
            },
        )
        return project

    @classmethod
    def _lock(cls, project_id) -> Project:
        project = Project.objects.select_for_update().filter(pk=project_id).first()
        if project is None:
            raise NotFoundError(
                f"Project {project_id} not found",
                error_code="PROJECT_NOT_FOUND",
                details={"project_id": str(project_id)},
            )
        return project
