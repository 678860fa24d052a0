"""Card brand lookup for gateway card type codes."""
from typing import Optional

# Gateway card type codes and their brand names
card_types = {
    "001": "Visa",
    "002": "Mastercard",
    "003": "American Express",
    "004": "Discover",
    "005": "Diners Club",
    "006": "Carte Blanche",
    "007": "JCB",
    "014": "Enroute",
    "021": "JAL",
    "024": "Maestro",  # UK Domestic
    "031": "Delta",
    "033": "Visa Electron",
    "034": "Dankort",
    "036": "Cartes Bancaires",
    "037": "Carta Si",
    "039": "Encoded account number",
    "040": "UATP",
    "042": "Maestro",  # International
    "050": "Hipercard",
    "051": "Aura",
    "054": "Elo",
    "062": "China UnionPay",
}

UNKNOWN_CARD_TYPE = "Unknown"


def card_type_name(code: Optional[str]) -> Optional[str]:
    """
    Look up the brand name for a gateway card type code.

    Args:
        code: Three digit card type code (e.g., "001")

    Returns:
        Brand name, or None for unmapped codes

    Example:
        >>> card_type_name("003")
        'American Express'
        >>> card_type_name("999") is None
        True
    """
    if not code:
        return None

    return card_types.get(code)


def card_type_label(code: Optional[str]) -> str:
    """
    Brand name for display, with an explicit fallback for unmapped codes.

    Example:
        >>> card_type_label("999")
        'Unknown'
    """
    return card_type_name(code) or UNKNOWN_CARD_TYPE
