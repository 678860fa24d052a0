"""Submission shapes accepted by checkout.

A submission is the key/value payload of a payment webform. It is either a
gala ticket order or a donation, decided once by the presence of a ``gala``
field group anywhere in the payload.
"""
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field

MAX_GALA_ROWS = 15
GALA_ROW_PREFIX = "gala_ticket_"

REQUIRED_FIELDS = [
    "amount",
    "expiration_month",
    "expiration_year",
    "name",
    "address",
    "phone",
    "email",
]

# Removed before the submission is stored; the gateway keeps these in tokens.
SENSITIVE_FIELDS = [
    "name",
    "company",
    "address",
    "phone",
    "card_type",
    "expiration_month",
    "expiration_year",
    "microform_container",
]


class GalaTicketRow(BaseModel):
    """One ticket line of a gala order."""

    index: int
    name: str
    quantity: int = Field(..., gt=0)
    amount: Decimal

    def note(self) -> str:
        return f"{self.name}: {self.quantity} x ${self.amount:.2f}"


class GalaSubmission(BaseModel):
    kind: Literal["gala"] = "gala"
    rows: List[GalaTicketRow] = Field(default_factory=list)

    def notes(self) -> List[str]:
        return [row.note() for row in self.rows]


class DonationSubmission(BaseModel):
    kind: Literal["donation"] = "donation"
    direction: Optional[str] = None
    in_honor_of: Optional[str] = None
    in_memory_of: Optional[str] = None
    journal_opt_out: bool = False
    recurring: bool = False

    def notes(self) -> List[str]:
        """Free-text order notes, in the order they are sent to the gateway."""
        notes = []
        if self.direction:
            notes.append(f"Direction: {self.direction}")
        if self.in_honor_of:
            notes.append(f"In honor of: {self.in_honor_of}")
        if self.in_memory_of:
            notes.append(f"In memory of: {self.in_memory_of}")
        if self.journal_opt_out:
            notes.append("Journal: opted out")
        if self.recurring:
            notes.append("Recurring: monthly")
        return notes


SubmissionKind = Annotated[Union[GalaSubmission, DonationSubmission], Field(discriminator="kind")]


def find_value(data: Any, key: str) -> Any:
    """Return the first value stored under ``key`` at any depth, or None.

    Gala ticket rows are not searched, their fields belong to the row.
    """
    if isinstance(data, dict):
        if key in data:
            return data[key]
        for name, value in data.items():
            if str(name).startswith(GALA_ROW_PREFIX):
                continue
            found = find_value(value, key)
            if found is not None:
                return found
    return None


def has_key(data: Any, key: str) -> bool:
    """Whether ``key`` appears at any depth of the payload."""
    if isinstance(data, dict):
        return key in data or any(has_key(value, key) for value in data.values())
    return False


def is_gala(data: dict[str, Any]) -> bool:
    return has_key(data, "gala")


def as_bool(value: Any) -> bool:
    """Interpret checkbox style values ("1", "true", 1, True)."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def required_fields(data: dict[str, Any]) -> List[str]:
    """Fields a submission must carry before anything is sent to the gateway."""
    fields = list(REQUIRED_FIELDS)
    if not is_gala(data):
        fields.append("direction")
    return fields


def missing_fields(data: dict[str, Any]) -> List[str]:
    """
    Required fields that are absent or empty, in check order.

    Args:
        data: Submission payload

    Returns:
        List of missing field names
    """
    missing = []
    for field in required_fields(data):
        value = find_value(data, field)
        if value is None or value == "" or value == {}:
            missing.append(field)
    return missing


def _gala_rows(data: dict[str, Any]) -> List[GalaTicketRow]:
    rows = []
    # Rows may be absent or empty; the scan continues past gaps.
    for index in range(1, MAX_GALA_ROWS + 1):
        row = find_value(data, f"{GALA_ROW_PREFIX}{index}")
        if not isinstance(row, dict):
            continue

        try:
            quantity = int(row.get("quantity") or 0)
            amount = Decimal(str(row.get("amount") or 0))
        except (TypeError, ValueError, InvalidOperation):
            continue

        if quantity <= 0:
            continue

        rows.append(
            GalaTicketRow(
                index=index,
                name=str(row.get("name") or f"Ticket {index}"),
                quantity=quantity,
                amount=amount,
            )
        )
    return rows


def resolve_submission_kind(data: dict[str, Any]) -> Union[GalaSubmission, DonationSubmission]:
    """
    Resolve the submission shape once, at validation time.

    Args:
        data: Submission payload

    Returns:
        GalaSubmission with its ticket rows, or DonationSubmission with its notes fields
    """
    if is_gala(data):
        return GalaSubmission(rows=_gala_rows(data))

    return DonationSubmission(
        direction=find_value(data, "direction") or None,
        in_honor_of=find_value(data, "in_honor_of") or None,
        in_memory_of=find_value(data, "in_memory_of") or None,
        journal_opt_out=as_bool(find_value(data, "journal_opt_out")),
        recurring=as_bool(find_value(data, "recurring")),
    )


def strip_sensitive_fields(data: dict[str, Any]) -> dict[str, Any]:
    """
    Copy of the submission without personal and card fields.

    Fields are removed at any depth, the same places ``find_value`` reads
    them from. Gala ticket rows are kept whole, their ``name`` is the ticket
    name.
    """
    stripped = {}
    for key, value in data.items():
        if key in SENSITIVE_FIELDS:
            continue
        if isinstance(value, dict) and not str(key).startswith(GALA_ROW_PREFIX):
            value = strip_sensitive_fields(value)
        stripped[key] = value
    return stripped
