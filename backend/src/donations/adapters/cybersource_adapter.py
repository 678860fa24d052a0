"""CyberSource payment gateway adapter."""
import json
from pathlib import Path
from typing import Any, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from donations.adapters.signing import JwtSigner, http_signature_headers
from donations.config import Settings, settings
from donations.metrics import gateway_errors_total
from donations.schemas.gateway import (
    AmountDetails,
    AuthorizationOptions,
    BillTo,
    ClientReferenceInformation,
    GatewayError,
    Initiator,
    InstrumentIdentifierCard,
    InstrumentIdentifierRequest,
    MerchantDefinedField,
    MerchantInitiatedTransaction,
    OrderInformation,
    PaymentInformation,
    PaymentInformationCustomer,
    PaymentInstrumentRequest,
    PaymentOutcome,
    PaymentRequest,
    PaymentResult,
    ProcessingInformation,
    ShipTo,
    TokenInformation,
    TokenOutcome,
    TokenResult,
    TransactionDetails,
)

logger = structlog.get_logger(__name__)

TEST_HOST = "apitest.cybersource.com"
LIVE_HOST = "api.cybersource.com"

HOST_ENVIRONMENTS = {
    TEST_HOST: "development",
    LIVE_HOST: "production",
}


class CybersourceAdapter:
    """
    Adapter for the CyberSource REST payment gateway.

    Every call is a single best-effort attempt. Create calls return a
    ``GatewayError`` instead of raising, lookups return ``None``; callers
    decide whether and when to retry.

    The request host is instance state changed by ``set_environment``, so an
    adapter should be used by one request or job at a time.
    """

    def __init__(self, config: Settings = settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the adapter from merchant settings.

        Args:
            config: Application settings holding the merchant credentials
            transport: Optional httpx transport (used by tests)
        """
        self.auth_type = config.gateway_auth_type
        self.merchant_id = config.merchant_id
        self.merchant_key_id = config.merchant_key_id
        self.merchant_secret_key = config.merchant_secret_key
        self.timeout = config.gateway_timeout_seconds
        self.request_host = TEST_HOST
        self._transport = transport
        self._signer: Optional[JwtSigner] = None

        ready = False
        if self.merchant_id:
            if self.auth_type == "jwt":
                self._signer = self._load_signer(config)
                ready = self._signer is not None
            else:
                ready = bool(self.merchant_key_id and self.merchant_secret_key)

        self._ready = ready
        self.set_environment(config.gateway_environment)

    def _load_signer(self, config: Settings) -> Optional[JwtSigner]:
        """Locate and load the merchant certificate."""
        if not config.certificate_directory:
            logger.warning("gateway_certificate_not_configured", merchant_id=self.merchant_id)
            return None

        path = Path(config.certificate_directory) / f"{self.merchant_id}.p12"
        try:
            return JwtSigner.from_certificate(self.merchant_id, path, config.certificate_password)
        except (OSError, ValueError) as e:
            logger.error("gateway_certificate_load_failed", path=str(path), error=str(e))
            return None

    def is_ready(self) -> bool:
        """Whether credentials (and the certificate, for JWT) were found."""
        return self._ready

    def set_environment(self, environment: Optional[str]) -> None:
        """
        Point subsequent requests at the environment's host.

        Unknown names fall back to the test host.

        Args:
            environment: "development", "sandbox" or "production"
        """
        name = (environment or "").lower()
        if name == "production":
            self.request_host = LIVE_HOST
        else:
            self.request_host = TEST_HOST

    def get_environment(self) -> str:
        """Environment name of the current request host."""
        return HOST_ENVIRONMENTS[self.request_host]

    # Request builders

    def create_payment_token(self, transient_token: str) -> TokenInformation:
        """Wrap a transient token captured by the client widget."""
        return TokenInformation(transient_token_jwt=transient_token)

    def create_client_reference_information(self, code: str) -> ClientReferenceInformation:
        return ClientReferenceInformation(code=code)

    def create_order_information_amount_details(self, total_amount: str, currency: str) -> AmountDetails:
        return AmountDetails(total_amount=total_amount, currency=currency)

    def create_billing_information(self, data: dict[str, Any]) -> BillTo:
        return BillTo.model_validate(data)

    def create_shipping_information(self, data: dict[str, Any]) -> ShipTo:
        return ShipTo.model_validate(data)

    def create_order_information(
        self,
        amount_details: AmountDetails,
        bill_to: Optional[BillTo] = None,
        ship_to: Optional[ShipTo] = None,
    ) -> OrderInformation:
        return OrderInformation(amount_details=amount_details, bill_to=bill_to, ship_to=ship_to)

    def create_processing_options(self, previous_transaction_id: str = "") -> ProcessingInformation:
        """
        Processing information for a recurring series.

        Without a previous transaction this is the first, customer-initiated
        charge: the card is stored on file and customer, payment instrument
        and shipping address tokens are created. With one, it is a
        merchant-initiated charge against the stored credentials.

        Args:
            previous_transaction_id: Gateway ID of the first charge of the series

        Returns:
            Processing information for the payment request
        """
        if not previous_transaction_id:
            return ProcessingInformation(
                authorization_options=AuthorizationOptions(
                    initiator=Initiator(credential_stored_on_file=True),
                ),
                action_list=["TOKEN_CREATE"],
                action_token_types=["customer", "paymentInstrument", "shippingAddress"],
                capture=False,
            )

        return ProcessingInformation(
            authorization_options=AuthorizationOptions(
                initiator=Initiator(
                    merchant_initiated_transaction=MerchantInitiatedTransaction(
                        previous_transaction_id=previous_transaction_id,
                    ),
                    stored_credential_used=True,
                    type="merchant",
                ),
            ),
            commerce_indicator="recurring",
        )

    def create_payment_information_customer(self, customer_id: str) -> PaymentInformationCustomer:
        return PaymentInformationCustomer(customer_id=customer_id)

    def create_payment_information(self, customer: PaymentInformationCustomer) -> PaymentInformation:
        return PaymentInformation(customer=customer)

    def create_payment_request(
        self,
        client_reference_information: ClientReferenceInformation,
        order_information: OrderInformation,
        processing_information: Optional[ProcessingInformation] = None,
        payment_information: Optional[PaymentInformation] = None,
        token_information: Optional[TokenInformation] = None,
        merchant_defined_information: Optional[List[MerchantDefinedField]] = None,
    ) -> PaymentRequest:
        return PaymentRequest(
            client_reference_information=client_reference_information,
            order_information=order_information,
            processing_information=processing_information,
            payment_information=payment_information,
            token_information=token_information,
            merchant_defined_information=merchant_defined_information or None,
        )

    # Gateway calls

    async def create_payment(self, request: PaymentRequest) -> PaymentOutcome:
        """
        Execute a charge.

        Args:
            request: Payment request

        Returns:
            PaymentResult with the gateway status, or GatewayError
        """
        return await self._create(
            "create_payment",
            "/pts/v2/payments",
            request.to_payload(),
            PaymentResult,
        )

    async def create_instrument_identifier(self, card_number: str) -> TokenOutcome:
        """Tokenize a card number into an instrument identifier."""
        request = InstrumentIdentifierRequest(card=InstrumentIdentifierCard(number=card_number))
        return await self._create(
            "create_instrument_identifier",
            "/tms/v1/instrumentidentifiers",
            request.to_payload(),
            TokenResult,
        )

    async def create_payment_instrument(self, request: PaymentInstrumentRequest) -> TokenOutcome:
        """Create a reusable payment instrument from an instrument identifier."""
        return await self._create(
            "create_payment_instrument",
            "/tms/v1/paymentinstruments",
            request.to_payload(),
            TokenResult,
        )

    async def get_transaction(self, payment_id: str) -> Optional[TransactionDetails]:
        """
        Look up a transaction for receipts.

        Transactions may take a few seconds to become readable after they are
        created, so ``None`` here is not necessarily permanent.

        Args:
            payment_id: Gateway transaction ID

        Returns:
            Transaction details, or None when not found or on error
        """
        data = await self._get_json("get_transaction", f"/tss/v2/transactions/{payment_id}")
        if data is None:
            return None

        try:
            return TransactionDetails.model_validate(data)
        except ValidationError as e:
            logger.error("gateway_unexpected_response", operation="get_transaction", error=str(e))
            return None

    async def get_customer(self, customer_id: str) -> Optional[dict[str, Any]]:
        """Customer token data, or None."""
        return await self._get_json("get_customer", f"/tms/v2/customers/{customer_id}")

    async def get_payment_instrument(self, customer_id: str, payment_instrument_id: str) -> Optional[dict[str, Any]]:
        """A customer's payment instrument, or None."""
        return await self._get_json(
            "get_payment_instrument",
            f"/tms/v2/customers/{customer_id}/payment-instruments/{payment_instrument_id}",
        )

    async def get_flex_key(self, target_origin: str) -> str:
        """
        Generate a one-time key for the client-side card capture widget.

        Args:
            target_origin: Origin of the page embedding the widget

        Returns:
            Key ID, or an empty string when not ready or on error
        """
        if not self.is_ready():
            return ""

        # Plain HTTP origins are only accepted for localhost.
        if "localhost" in target_origin:
            target_origin = "http://localhost"

        payload = {"encryptionType": "RsaOaep256", "targetOrigin": target_origin}

        try:
            response = await self._request("POST", "/flex/v1/keys?format=JWT", payload)
        except httpx.HTTPError as e:
            self._log_transport_error("get_flex_key", e)
            return ""

        if response.is_error:
            self._error_from_response("get_flex_key", response)
            return ""

        try:
            return response.json().get("keyId", "")
        except ValueError:
            return ""

    # Transport

    async def _create(self, operation: str, resource: str, payload: dict[str, Any], result_model):
        if not self.is_ready():
            return GatewayError(message="Payment client is not ready.")

        try:
            response = await self._request("POST", resource, payload)
        except httpx.HTTPError as e:
            self._log_transport_error(operation, e)
            return GatewayError(message="The payment processor could not be reached. Please try again later.")

        if response.is_error:
            return self._error_from_response(operation, response)

        try:
            return result_model.model_validate(response.json())
        except ValueError as e:
            gateway_errors_total.labels(operation=operation).inc()
            logger.error("gateway_unexpected_response", operation=operation, error=str(e))
            return GatewayError(
                message="Unexpected response from the payment processor.",
                status_code=response.status_code,
                body=response.text,
            )

    async def _get_json(self, operation: str, resource: str) -> Optional[dict[str, Any]]:
        if not self.is_ready():
            return None

        try:
            response = await self._request("GET", resource)
        except httpx.HTTPError as e:
            self._log_transport_error(operation, e)
            return None

        if response.is_error:
            self._error_from_response(operation, response)
            return None

        try:
            return response.json()
        except ValueError:
            return None

    async def _request(self, method: str, resource: str, payload: Optional[dict[str, Any]] = None) -> httpx.Response:
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        headers = {
            "accept": "application/hal+json;charset=utf-8",
            "content-type": "application/json;charset=utf-8",
            "host": self.request_host,
            **self._auth_headers(method, resource, body),
        }

        async with httpx.AsyncClient(
            base_url=f"https://{self.request_host}",
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            return await client.request(method, resource, content=body or None, headers=headers)

    def _auth_headers(self, method: str, resource: str, body: bytes) -> dict[str, str]:
        if self._signer is not None:
            return self._signer.headers(method, body)

        return http_signature_headers(
            merchant_id=self.merchant_id,
            key_id=self.merchant_key_id,
            secret_key=self.merchant_secret_key,
            host=self.request_host,
            method=method,
            resource=resource,
            body=body,
        )

    def _error_from_response(self, operation: str, response: httpx.Response) -> GatewayError:
        gateway_errors_total.labels(operation=operation).inc()

        try:
            body = response.json()
        except ValueError:
            body = response.text

        message = None
        if isinstance(body, dict):
            error_information = body.get("errorInformation")
            errors = body.get("errors")
            message = body.get("message")
            if not message and isinstance(error_information, dict):
                message = error_information.get("message")
            if not message and isinstance(errors, list) and errors:
                first = errors[0]
                message = first.get("message") if isinstance(first, dict) else str(first)
        if message is not None and not isinstance(message, str):
            message = str(message)

        logger.warning(
            "gateway_request_failed",
            operation=operation,
            status_code=response.status_code,
            message=message,
            environment=self.get_environment(),
        )

        return GatewayError(
            message=message or f"Payment processor error (HTTP {response.status_code}).",
            status_code=response.status_code,
            body=body,
        )

    def _log_transport_error(self, operation: str, error: Exception) -> None:
        gateway_errors_total.labels(operation=operation).inc()
        logger.error(
            "gateway_transport_error",
            operation=operation,
            environment=self.get_environment(),
            error=str(error),
        )
