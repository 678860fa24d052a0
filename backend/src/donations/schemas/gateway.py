"""Typed request and response models for the CyberSource REST API.

Field names are snake_case in Python and serialised with the gateway's
camelCase names. Request models are built through the ``create_*`` helpers
on ``CybersourceAdapter`` and turned into JSON with ``to_payload()``.
"""
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GatewayModel(BaseModel):
    """Base model using the gateway's camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict[str, Any]:
        """Serialise for the request body."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# Request models

class TokenInformation(GatewayModel):
    """Transient token captured by the client-side card widget."""

    transient_token_jwt: str


class ClientReferenceInformation(GatewayModel):
    """Merchant order reference."""

    code: str = Field(..., min_length=1)


class AmountDetails(GatewayModel):
    """Charge amount, as a decimal string."""

    total_amount: str = Field(..., min_length=1)
    currency: str = Field(..., min_length=3, max_length=3)


class Address(GatewayModel):
    """Postal address as the gateway returns it."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    locality: Optional[str] = None
    administrative_area: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None


class BillTo(Address):
    """Billing address of a new charge."""

    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    address1: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)


class ShipTo(Address):
    """Shipping address stored with a recurring customer token."""

    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)


class OrderInformation(GatewayModel):
    """Amount and addresses of a charge."""

    amount_details: AmountDetails
    bill_to: Optional[BillTo] = None
    ship_to: Optional[ShipTo] = None


class MerchantInitiatedTransaction(GatewayModel):
    """Reference to the first charge of a recurring series."""

    previous_transaction_id: str = Field(..., alias="previousTransactionID")


class Initiator(GatewayModel):
    """Who initiated the charge and whether stored credentials are involved."""

    credential_stored_on_file: Optional[bool] = None
    stored_credential_used: Optional[bool] = None
    type: Optional[str] = None
    merchant_initiated_transaction: Optional[MerchantInitiatedTransaction] = None


class AuthorizationOptions(GatewayModel):
    initiator: Initiator


class ProcessingInformation(GatewayModel):
    """Processing flags distinguishing first and subsequent recurring charges."""

    authorization_options: Optional[AuthorizationOptions] = None
    action_list: Optional[List[str]] = None
    action_token_types: Optional[List[str]] = None
    capture: Optional[bool] = None
    commerce_indicator: Optional[str] = None

    @property
    def is_subsequent(self) -> bool:
        return self.commerce_indicator == "recurring"


class PaymentInformationCustomer(GatewayModel):
    customer_id: str = Field(..., min_length=1)


class PaymentInformation(GatewayModel):
    customer: Optional[PaymentInformationCustomer] = None


class MerchantDefinedField(GatewayModel):
    """One key/value pair of merchant-defined data."""

    key: str
    value: str = Field(..., max_length=100)


class PaymentRequest(GatewayModel):
    """Body of ``POST /pts/v2/payments``."""

    client_reference_information: ClientReferenceInformation
    order_information: OrderInformation
    processing_information: Optional[ProcessingInformation] = None
    payment_information: Optional[PaymentInformation] = None
    token_information: Optional[TokenInformation] = None
    merchant_defined_information: Optional[List[MerchantDefinedField]] = None


class InstrumentIdentifierCard(GatewayModel):
    number: str = Field(..., min_length=12)


class InstrumentIdentifierRequest(GatewayModel):
    """Body of ``POST /tms/v1/instrumentidentifiers``."""

    card: InstrumentIdentifierCard


class PaymentInstrumentCard(GatewayModel):
    expiration_month: str
    expiration_year: str
    type: Optional[str] = None


class InstrumentIdentifierReference(GatewayModel):
    id: str


class PaymentInstrumentRequest(GatewayModel):
    """Body of ``POST /tms/v1/paymentinstruments``."""

    card: PaymentInstrumentCard
    bill_to: Address
    instrument_identifier: InstrumentIdentifierReference


# Response models

class ErrorInformation(GatewayModel):
    reason: Optional[str] = None
    message: Optional[str] = None


class TokenCustomer(GatewayModel):
    id: Optional[str] = None


class ResponseTokenInformation(GatewayModel):
    customer: Optional[TokenCustomer] = None


class PaymentResult(GatewayModel):
    """Successful response of a payment call, whatever its business status."""

    error: Literal[False] = False
    id: str
    submit_time_utc: Optional[str] = None
    status: str
    token_information: Optional[ResponseTokenInformation] = None
    error_information: Optional[ErrorInformation] = None

    @property
    def customer_id(self) -> Optional[str]:
        """Gateway customer token created for a first recurring charge."""
        if self.token_information and self.token_information.customer:
            return self.token_information.customer.id
        return None


class TokenResult(GatewayModel):
    """Response of a token management create call."""

    error: Literal[False] = False
    id: str
    state: Optional[str] = None


class GatewayError(BaseModel):
    """Transport or API failure of a gateway call."""

    error: Literal[True] = True
    message: str
    status_code: Optional[int] = None
    body: Any = None


PaymentOutcome = Union[PaymentResult, GatewayError]
TokenOutcome = Union[TokenResult, GatewayError]


class TransactionCard(GatewayModel):
    suffix: Optional[str] = None
    type: Optional[str] = None
    expiration_month: Optional[str] = None
    expiration_year: Optional[str] = None


class TransactionPaymentInformation(GatewayModel):
    card: Optional[TransactionCard] = None


class TransactionAmountDetails(GatewayModel):
    total_amount: Optional[str] = None
    authorized_amount: Optional[str] = None
    currency: Optional[str] = None


class TransactionOrderInformation(GatewayModel):
    bill_to: Optional[Address] = None
    amount_details: Optional[TransactionAmountDetails] = None


class TransactionDetails(GatewayModel):
    """Response of ``GET /tss/v2/transactions/{id}``."""

    id: str
    submit_time_utc: Optional[str] = Field(default=None, alias="submitTimeUTC")
    order_information: TransactionOrderInformation = Field(default_factory=TransactionOrderInformation)
    payment_information: TransactionPaymentInformation = Field(default_factory=TransactionPaymentInformation)
