"""Checkout service turning webform submissions into gateway charges."""
import random
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.config import FormDefinition, Settings, settings
from donations.exceptions import (
    GatewayNotReadyError,
    GatewayRequestError,
    PaymentDeclinedError,
    SubmissionValidationError,
)
from donations.metrics import payments_attempted_total, payments_declined_total
from donations.models.payment import Payment
from donations.schemas.gateway import GatewayError, MerchantDefinedField, PaymentRequest, TokenInformation
from donations.schemas.submission import (
    GalaSubmission,
    as_bool,
    find_value,
    missing_fields,
    resolve_submission_kind,
    strip_sensitive_fields,
)
from donations.services.payment_service import PaymentService
from donations.services.receipt_service import ORDER_DETAILS_SEPARATOR, ReceiptService
from donations.utils.amounts import is_valid_amount, normalize_amount
from donations.utils.dates import add_months, parse_gateway_time

logger = structlog.get_logger(__name__)

CURRENCY = "USD"
MERCHANT_DEFINED_VALUE_LENGTH = 100

MISSING_FIELDS_MESSAGE = (
    "Missing necessary fields for payment transaction. Payment transaction not processed. "
    "Contact administrator to update form configuration."
)

# Statuses that are reported to the submitter and never recorded.
DECLINE_MESSAGES = {
    "DECLINED": "Your payment request was declined.",
    "AUTHORIZED_RISK_DECLINED": "Your payment request was declined.",
    "INVALID_REQUEST": "Your payment request was invalid.",
    "SERVER_ERROR": "The payment processor could not complete your payment. Please try again later.",
}


class CheckoutState(str, Enum):
    """Progress of one submission through checkout."""

    VALIDATING = "validating"
    TOKEN_EXCHANGE = "token_exchange"
    CHARGING = "charging"
    RECORDING = "recording"
    AUTHORIZED = "authorized"
    DECLINED = "declined"
    INVALID = "invalid"
    SERVER_ERROR = "server_error"


STATUS_STATES = {
    "DECLINED": CheckoutState.DECLINED,
    "AUTHORIZED_RISK_DECLINED": CheckoutState.DECLINED,
    "INVALID_REQUEST": CheckoutState.INVALID,
    "SERVER_ERROR": CheckoutState.SERVER_ERROR,
}


@dataclass
class CheckoutResult:
    """Outcome of a recorded checkout."""

    state: CheckoutState
    payment: Payment
    code: str
    status: str
    submission_data: dict[str, Any] = field(default_factory=dict)
    confirmation_message: Optional[str] = None
    receipt_sent: bool = False


def generate_code(prefix: str) -> str:
    """
    Generate a human-facing order code.

    Codes are not checked for collisions.

    Example:
        >>> generate_code("AAA")  # doctest: +SKIP
        'AAA-4821-1937'
    """
    return f"{prefix}-{random.randint(1000, 9999)}-{random.randint(1000, 9999)}"


class CheckoutOrchestrator:
    """
    Runs one webform submission through validation, charge and recording.

    Nothing is sent to the gateway until the submission passes local
    validation, and nothing is recorded unless the gateway returns a
    non-declined status.
    """

    def __init__(
        self,
        db: AsyncSession,
        client: CybersourceAdapter,
        form: FormDefinition,
        config: Settings = settings,
        receipts: Optional[ReceiptService] = None,
    ):
        """
        Initialize the orchestrator for one submission.

        Args:
            db: Database session
            client: Gateway client, used for this submission only
            form: Payment settings of the submitted webform
            config: Application settings
            receipts: Receipt service, defaults to one on the same session
        """
        self.db = db
        self.client = client
        self.form = form
        self.config = config
        self.payments = PaymentService(db)
        self.receipts = receipts or ReceiptService(db, config)
        self.state = CheckoutState.VALIDATING

    def _transition(self, state: CheckoutState, **context) -> None:
        self.state = state
        logger.debug("checkout_state_changed", form_id=self.form.form_id, state=state.value, **context)

    async def checkout(self, data: dict[str, Any]) -> CheckoutResult:
        """
        Charge a submission and record the payment.

        Args:
            data: Submission payload

        Returns:
            Result holding the recorded payment and confirmation

        Raises:
            GatewayNotReadyError: If the gateway client has no usable credentials
            SubmissionValidationError: If a required field, the amount or the token is missing
            GatewayRequestError: If the gateway call failed
            PaymentDeclinedError: If the gateway declined or rejected the charge
        """
        if not self.client.is_ready():
            logger.error("checkout_gateway_not_ready", form_id=self.form.form_id)
            raise GatewayNotReadyError()

        self._transition(CheckoutState.VALIDATING)
        amount = self._validate(data)

        environment = self.config.form_environment(self.form)
        self.client.set_environment(environment)

        self._transition(CheckoutState.TOKEN_EXCHANGE)
        token = self._transient_token(data)
        if not token:
            self._transition(CheckoutState.INVALID)
            raise SubmissionValidationError("microform_container", "No payment detected.")
        token_information = self.client.create_payment_token(token)

        kind = resolve_submission_kind(data)
        is_recurring = as_bool(find_value(data, "recurring"))
        code = generate_code(self.form.code_prefix)
        notes = kind.notes()

        request = self._build_request(
            data=data,
            code=code,
            amount=amount,
            is_recurring=is_recurring,
            notes=notes,
            token_information=token_information,
        )

        self._transition(CheckoutState.CHARGING, code=code)
        kind_label = "gala" if isinstance(kind, GalaSubmission) else "donation"
        result = await self.client.create_payment(request)

        if isinstance(result, GatewayError):
            payments_attempted_total.labels(status="ERROR", kind=kind_label).inc()
            self._transition(CheckoutState.SERVER_ERROR)
            logger.warning(
                "checkout_gateway_error",
                form_id=self.form.form_id,
                code=code,
                status_code=result.status_code,
            )
            raise GatewayRequestError(result.message, result.status_code)

        status = result.status
        payments_attempted_total.labels(status=status, kind=kind_label).inc()

        if status in DECLINE_MESSAGES:
            payments_declined_total.labels(status=status).inc()
            self._transition(STATUS_STATES[status])
            reason = result.error_information.reason if result.error_information else None
            logger.warning(
                "payment_declined",
                form_id=self.form.form_id,
                code=code,
                status=status,
                reason=reason,
                message=result.error_information.message if result.error_information else None,
            )
            raise PaymentDeclinedError(status, DECLINE_MESSAGES[status], reason)

        self._transition(CheckoutState.RECORDING, code=code, status=status)
        payment = await self._record(
            result=result,
            code=code,
            amount=amount,
            environment=environment,
            is_recurring=is_recurring,
            notes=notes,
        )
        # A charged payment stays recorded whatever happens to its receipt.
        await self.db.commit()

        self._transition(CheckoutState.AUTHORIZED, code=code, status=status)

        receipt_sent = False
        if self.form.email_receipt:
            receipt_sent = await self.receipts.try_send_receipt(
                self.client,
                payment,
                key=f"{self.form.form_id}_receipt",
                to=find_value(data, "email"),
                wait=True,
            )

        return CheckoutResult(
            state=self.state,
            payment=payment,
            code=code,
            status=status,
            submission_data=self._stored_submission(data, code, payment, status),
            confirmation_message=self.confirmation_message(status),
            receipt_sent=receipt_sent,
        )

    def _validate(self, data: dict[str, Any]) -> str:
        missing = missing_fields(data)
        if missing:
            self._transition(CheckoutState.INVALID)
            # Only the last missing field is reported.
            field_name = missing.pop()
            logger.info("checkout_missing_field", form_id=self.form.form_id, field=field_name)
            raise SubmissionValidationError(field_name, MISSING_FIELDS_MESSAGE)

        raw_amount = find_value(data, "amount")
        if not is_valid_amount(raw_amount):
            self._transition(CheckoutState.INVALID)
            raise SubmissionValidationError("amount", "Please specify an amount.")

        return normalize_amount(raw_amount)

    @staticmethod
    def _transient_token(data: dict[str, Any]) -> Optional[str]:
        container = data.get("microform_container")
        if isinstance(container, dict):
            return container.get("token") or None
        if isinstance(container, str):
            return container or None
        return None

    def _build_request(
        self,
        data: dict[str, Any],
        code: str,
        amount: str,
        is_recurring: bool,
        notes: List[str],
        token_information: TokenInformation,
    ) -> PaymentRequest:
        bill_to_fields = billing_fields(data)

        try:
            bill_to = self.client.create_billing_information(bill_to_fields)
            ship_to = None
            if is_recurring:
                ship_to = self.client.create_shipping_information(shipping_fields(bill_to_fields))
        except ValidationError as e:
            self._transition(CheckoutState.INVALID)
            error = e.errors()[0]
            field_name = str(error["loc"][-1]) if error.get("loc") else None
            raise SubmissionValidationError(field_name, MISSING_FIELDS_MESSAGE) from e

        order_information = self.client.create_order_information(
            self.client.create_order_information_amount_details(amount, CURRENCY),
            bill_to=bill_to,
            ship_to=ship_to,
        )

        return self.client.create_payment_request(
            client_reference_information=self.client.create_client_reference_information(code),
            order_information=order_information,
            processing_information=self.client.create_processing_options() if is_recurring else None,
            token_information=token_information,
            merchant_defined_information=merchant_defined_information(notes),
        )

    async def _record(
        self,
        result,
        code: str,
        amount: str,
        environment: str,
        is_recurring: bool,
        notes: List[str],
    ) -> Payment:
        submitted = parse_gateway_time(result.submit_time_utc)

        fields = dict(
            code=code,
            form_id=self.form.form_id,
            payment_id=result.id,
            authorized_amount=Decimal(amount),
            currency=CURRENCY,
            status=result.status,
            submitted=submitted,
            environment=environment,
            order_details_long=ORDER_DETAILS_SEPARATOR.join(notes) or None,
            recurring=is_recurring,
            recurring_active=False,
            recurring_max=self.config.recurring_max_default,
        )

        if is_recurring:
            customer_id = result.customer_id
            if customer_id:
                fields.update(
                    customer_id=customer_id,
                    recurring_active=True,
                    recurring_next=add_months(submitted or datetime.utcnow()),
                )
            else:
                logger.warning("recurring_customer_missing", code=code, payment_id=result.id)

        return await self.payments.create_payment(**fields)

    def confirmation_message(self, status: str) -> Optional[str]:
        """Message shown to the submitter after a recorded charge."""
        if status == "AUTHORIZED":
            message = "Thank you. Your payment was authorized."
            if self.form.email_receipt:
                message += " You will receive an email copy of your receipt."
            return message

        if status == "AUTHORIZED_PENDING_REVIEW":
            message = "Thank you. Your payment is authorized and pending review."
            if self.form.email_receipt:
                message += " You will receive an email copy of your receipt once processed."
            return message

        return None

    @staticmethod
    def _stored_submission(data: dict[str, Any], code: str, payment: Payment, status: str) -> dict[str, Any]:
        stored = strip_sensitive_fields(data)
        stored.update(code=code, payment_id=payment.payment_id, payment_entity=payment.id, status=status)
        return stored


def billing_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Gateway bill-to fields from the submission's name and address groups."""
    name = find_value(data, "name")
    address = find_value(data, "address")
    name = name if isinstance(name, dict) else {}
    address = address if isinstance(address, dict) else {}

    return {
        "first_name": name.get("first"),
        "last_name": name.get("last"),
        "company": find_value(data, "company") or None,
        "address1": address.get("address"),
        "address2": address.get("address_2") or None,
        "locality": address.get("city"),
        "administrative_area": address.get("state_province"),
        "postal_code": address.get("postal_code"),
        "country": address.get("country"),
        "email": find_value(data, "email"),
        "phone_number": find_value(data, "phone"),
    }


def shipping_fields(bill_to_fields: dict[str, Any]) -> dict[str, Any]:
    """Ship-to fields are the billing fields without contact details."""
    return {key: value for key, value in bill_to_fields.items() if key not in ("email", "phone_number")}


def merchant_defined_information(notes: List[str]) -> List[MerchantDefinedField]:
    return [
        MerchantDefinedField(key=str(index), value=note[:MERCHANT_DEFINED_VALUE_LENGTH])
        for index, note in enumerate(notes, start=1)
    ]
