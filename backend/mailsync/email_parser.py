"""
Bank Notification Email Parser
Classifies bank notification emails and extracts structured transaction data
through an LLM completion call.

Flow:
1. Payment confirmations ("hemos recibido tu pago", ...) are skipped before any
   LLM call so card payments are never counted as purchases.
2. The LLM is asked for a fixed JSON shape, restricted to the live category
   catalog.
3. The reply is treated as untrusted input: amount must be positive, every
   other field is defaulted when missing, and a confidence score is computed.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from .errors import CompletionError, ParseError, ParseErrorKind
from .llm_providers.base_provider import BaseLLMProvider
from .logging_config import get_logger

logger = get_logger(__name__)

# Phrases that mark a card payment confirmation rather than a purchase
PAYMENT_KEYWORDS = (
    "pago recibido",
    "pago exitoso",
    "pago aplicado",
    "abono recibido",
    "abono aplicado",
    "pago de tarjeta",
    "pago a tarjeta",
    "pago minimo",
    "pago mínimo",
    "gracias por tu pago",
    "hemos recibido tu pago",
    "tu pago fue procesado",
    "confirmacion de pago",
    "confirmación de pago",
    "payment received",
    "payment applied",
)

DEFAULT_CURRENCY = "RD$"
CURRENCY_ALIASES = {
    "DOP": "RD$",
    "RD": "RD$",
    "RD$": "RD$",
    "PESOS": "RD$",
    "USD": "USD",
    "US$": "USD",
    "DOLARES": "USD",
    "EUR": "EUR",
    "EUROS": "EUR",
}

UNKNOWN_MERCHANT = "Unknown"
UNKNOWN_MERCHANT_NAMES = {"unknown", "desconocido"}

# Catalog entries treated as the "other" bucket when the model gives no usable category
FALLBACK_CATEGORY_MARKERS = ("otro", "other")

CARD_LAST4_RE = re.compile(r"^\d{4}$")
CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

# Confidence weights (sum to 100)
CONFIDENCE_AMOUNT = 30
CONFIDENCE_MERCHANT = 25
CONFIDENCE_DATE = 20
CONFIDENCE_CARD = 15
CONFIDENCE_CATEGORY = 10

DEFAULT_BODY_LIMIT = 3000

# transactions.amount is NUMERIC(12, 2); transactions.merchant is VARCHAR(255)
CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")
MERCHANT_MAX_LENGTH = 255

SYSTEM_PROMPT = """Eres un experto en extraer datos de notificaciones bancarias de transacciones.
Tu trabajo es extraer informacion estructurada de emails de alertas bancarias.
Siempre responde UNICAMENTE con JSON valido, sin texto adicional.
Si no puedes extraer algun dato, usa null.
El monto siempre debe ser un numero positivo.
La fecha debe estar en formato ISO 8601.
La moneda debe ser el codigo (RD$, USD, EUR, DOP).
IMPORTANTE: La categoria DEBE ser exactamente una de estas opciones: {category_list}.
Elige la que mejor corresponda al tipo de gasto segun el comercio.
Si no puedes determinar la categoria con certeza, usa "{fallback_category}"."""

USER_PROMPT = """Extrae la informacion de esta notificacion bancaria{bank_clause}:

ASUNTO: {subject}

CONTENIDO:
{body}

Responde SOLO con este JSON:
{{
  "amount": <numero positivo>,
  "currency": "<RD$|USD|EUR|DOP>",
  "merchant": "<nombre del comercio/establecimiento>",
  "category": "<DEBE ser exactamente una de: {category_list}>",
  "date": "<fecha ISO 8601>",
  "cardLast4": "<ultimos 4 digitos de tarjeta o null>",
  "authorizationCode": "<codigo de autorizacion o null>",
  "description": "<descripcion adicional o null>"
}}"""


@dataclass
class ParsedTransaction:
    """Transaction fields extracted from one email (not persisted directly)."""

    amount: Decimal
    currency: str
    merchant: str
    category: Optional[str]
    date: datetime  # Bank wall-clock time, naive
    card_last4: Optional[str] = None
    authorization_code: Optional[str] = None
    description: Optional[str] = None
    confidence: int = 0

    def to_dict(self) -> dict:
        """JSON-safe snapshot stored on the candidate email."""
        return {
            "amount": str(self.amount),
            "currency": self.currency,
            "merchant": self.merchant,
            "category": self.category,
            "date": self.date.isoformat(),
            "card_last4": self.card_last4,
            "authorization_code": self.authorization_code,
            "description": self.description,
            "confidence": self.confidence,
        }


@dataclass
class ParseResult:
    """Either a ParsedTransaction or a ParseError, never both."""

    transaction: Optional[ParsedTransaction] = None
    error: Optional[ParseError] = None
    cost: float = 0.0
    tokens: int = 0
    raw_response: Optional[str] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.transaction is not None


def is_payment_notification(subject: str, body: str) -> bool:
    """True if the email confirms a card payment instead of reporting a purchase."""
    text = f"{subject or ''} {body or ''}".lower()
    return any(keyword in text for keyword in PAYMENT_KEYWORDS)


def find_fallback_category(category_names: list[str]) -> Optional[str]:
    """The catalog's "other" category, else its first entry, else None."""
    for name in category_names:
        lowered = name.lower()
        if any(marker in lowered for marker in FALLBACK_CATEGORY_MARKERS):
            return name
    return category_names[0] if category_names else None


def match_category_name(candidate: Optional[str], category_names: list[str]) -> Optional[str]:
    """
    Map a model-supplied category onto a catalog name.

    Exact (case-insensitive) match first, then containment in either direction.
    Returns None when nothing in the catalog matches.
    """
    if not candidate or not isinstance(candidate, str):
        return None

    wanted = candidate.strip().lower()
    if not wanted:
        return None

    for name in category_names:
        if name.lower() == wanted:
            return name

    for name in category_names:
        lowered = name.lower()
        if wanted in lowered or lowered in wanted:
            return name

    return None


def normalize_currency(currency: Any) -> str:
    """Map currency aliases to RD$, USD or EUR (RD$ when unknown)."""
    if not currency or not isinstance(currency, str):
        return DEFAULT_CURRENCY
    return CURRENCY_ALIASES.get(currency.strip().upper(), DEFAULT_CURRENCY)


def coerce_amount(value: Any) -> Optional[Decimal]:
    """
    Turn the model's amount into a positive Decimal with two places.

    Accepts numbers and strings such as "RD$1,250.00" or "350,75".
    Returns None for missing, non-numeric, zero or negative amounts.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        text = repr(value) if isinstance(value, float) else str(value)
    elif isinstance(value, str):
        text = re.sub(r"[^\d.,\-]", "", value)
        # "350,75" uses comma as decimal separator; otherwise commas are thousands
        if re.match(r"^-?\d+,\d{2}$", text):
            text = text.replace(",", ".")
        else:
            text = text.replace(",", "")
    else:
        return None

    try:
        amount = Decimal(text)
    except (InvalidOperation, ValueError):
        return None

    if not amount.is_finite() or amount > MAX_AMOUNT:
        return None

    # Sub-cent replies round to zero, so positivity is checked after rounding
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount <= 0 or amount > MAX_AMOUNT:
        return None
    return amount


def parse_transaction_date(value: Any) -> Optional[datetime]:
    """
    Parse the model's date into a naive wall-clock datetime.

    Accepts ISO 8601 (with or without time / offset) and dd/mm/yyyy. An
    offset is dropped without conversion because banks print local time.
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        pass

    for fmt in ("%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M", "%d/%m/%Y", "%d-%m-%Y"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    return None


def calculate_confidence(data: dict, amount: Optional[Decimal], date: Optional[datetime]) -> int:
    """
    Weighted 0-100 score for how complete the extraction is.

    +30 valid amount, +25 merchant identified, +20 parseable date,
    +15 four-digit card suffix, +10 category present.
    """
    confidence = 0

    if amount is not None:
        confidence += CONFIDENCE_AMOUNT

    merchant = data.get("merchant")
    if isinstance(merchant, str) and merchant.strip() and merchant.strip().lower() not in UNKNOWN_MERCHANT_NAMES:
        confidence += CONFIDENCE_MERCHANT

    if date is not None:
        confidence += CONFIDENCE_DATE

    card_last4 = _first_present(data, "cardLast4", "card_last4")
    if card_last4 is not None and CARD_LAST4_RE.match(str(card_last4)):
        confidence += CONFIDENCE_CARD

    if data.get("category"):
        confidence += CONFIDENCE_CATEGORY

    return confidence


def build_parser_prompt(
    subject: str,
    body: str,
    category_names: list[str],
    bank_name: Optional[str] = None,
    body_limit: int = DEFAULT_BODY_LIMIT,
) -> tuple[str, str]:
    """
    Build (system_prompt, user_prompt) for one email.

    The category list always comes from the live catalog.
    """
    category_list = ", ".join(category_names)
    fallback = find_fallback_category(category_names) or ""

    system_prompt = SYSTEM_PROMPT.format(category_list=category_list, fallback_category=fallback)
    user_prompt = USER_PROMPT.format(
        bank_clause=f" de {bank_name}" if bank_name else "",
        subject=subject or "",
        body=(body or "")[:body_limit],
        category_list=category_list,
    )
    return system_prompt, user_prompt


def parse_email_content(
    subject: str,
    body: str,
    categories: list,
    provider: BaseLLMProvider,
    bank_name: Optional[str] = None,
    body_limit: int = DEFAULT_BODY_LIMIT,
) -> ParseResult:
    """
    Extract a transaction from a bank notification email.

    Args:
        subject: Email subject
        body: Plain-text email body
        categories: Category catalog (dicts with "name", or plain names)
        provider: Completion provider
        bank_name: Optional bank hint for the prompt
        body_limit: Characters of body sent to the model

    Returns:
        ParseResult holding a ParsedTransaction, or a ParseError of kind
        skipped_payment, transient, malformed or invalid_amount
    """
    if is_payment_notification(subject, body):
        return ParseResult(
            error=ParseError(
                ParseErrorKind.SKIPPED_PAYMENT,
                "Email is a card payment confirmation, not a purchase",
            )
        )

    category_names = [c["name"] if isinstance(c, dict) else str(c) for c in categories]
    system_prompt, user_prompt = build_parser_prompt(
        subject, body, category_names, bank_name=bank_name, body_limit=body_limit
    )

    try:
        response = provider.complete(user_prompt, system_prompt=system_prompt)
    except CompletionError as e:
        kind = ParseErrorKind.MALFORMED if e.kind == CompletionError.MALFORMED else ParseErrorKind.TRANSIENT
        return ParseResult(error=ParseError(kind, str(e)))

    content = response.content or ""
    logger.debug(
        f"Parser completion: {response.total_tokens} tokens, ${response.cost:.6f}",
    )

    try:
        data = json.loads(CODE_FENCE_RE.sub("", content.strip()))
    except json.JSONDecodeError as e:
        return ParseResult(
            error=ParseError(ParseErrorKind.MALFORMED, f"Reply is not valid JSON: {e.msg}", content),
            cost=response.cost,
            tokens=response.total_tokens,
            raw_response=content,
        )

    if not isinstance(data, dict):
        return ParseResult(
            error=ParseError(ParseErrorKind.MALFORMED, "Reply is not a JSON object", content),
            cost=response.cost,
            tokens=response.total_tokens,
            raw_response=content,
        )

    amount = coerce_amount(data.get("amount"))
    if amount is None:
        return ParseResult(
            error=ParseError(ParseErrorKind.INVALID_AMOUNT, "Could not extract valid amount", content),
            cost=response.cost,
            tokens=response.total_tokens,
            raw_response=content,
        )

    date = parse_transaction_date(data.get("date"))
    merchant = data.get("merchant")
    merchant = merchant.strip() if isinstance(merchant, str) and merchant.strip() else UNKNOWN_MERCHANT
    merchant = merchant[:MERCHANT_MAX_LENGTH].rstrip()

    category = match_category_name(data.get("category"), category_names) or find_fallback_category(
        category_names
    )

    transaction = ParsedTransaction(
        amount=amount,
        currency=normalize_currency(data.get("currency")),
        merchant=merchant,
        category=category,
        date=date or datetime.now(),
        card_last4=_optional_text(_first_present(data, "cardLast4", "card_last4")),
        authorization_code=_optional_text(
            _first_present(data, "authorizationCode", "authorization_code")
        ),
        description=_optional_text(data.get("description")),
        confidence=calculate_confidence(data, amount, date),
    )

    return ParseResult(
        transaction=transaction,
        cost=response.cost,
        tokens=response.total_tokens,
        raw_response=content,
    )


def _first_present(data: dict, *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
