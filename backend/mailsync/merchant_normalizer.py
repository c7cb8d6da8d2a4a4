"""
Merchant Name Normalizer
Turns the merchant text printed in bank notifications into a stable lookup key
for the merchant mapping tables, and derives a wildcard pattern hint.

Examples:
- "Compra FARMACIA  Carol #12345"  -> "FARMACIA CAROL"
- "PURCHASE Supermercado Nacional" -> "SUPERMERCADO NACIONAL"
"""

import re

# Special characters that banks sprinkle into merchant descriptors
SPECIAL_CHARS_RE = re.compile(r"[*#@!$%^&()_+=\[\]{}|\\:\";'<>,.?/~`]")

# Store numbers / terminal ids appended to the merchant name
TRAILING_CODE_RE = re.compile(r"\s+\d{4,}$")

# Transaction-type words some banks put in front of the merchant
TRANSACTION_PREFIX_RE = re.compile(
    r"^(PURCHASE|PAYMENT|CHARGE|DEBIT|COMPRA|PAGO|CONSUMO|CARGO)\s+",
    re.IGNORECASE,
)

WHITESPACE_RE = re.compile(r"\s+")

# Words shorter than this never make it into a pattern
MIN_PATTERN_WORD_LENGTH = 3

# merchant_category_mappings.merchant_name / merchant_pattern are VARCHAR(255)
MAX_KEY_LENGTH = 255


def normalize_merchant_name(merchant: str) -> str:
    """
    Normalize a raw merchant string into a lookup key.

    Uppercases, collapses whitespace, strips special characters, trailing
    numeric codes (4+ digits) and transaction-type prefixes.

    Args:
        merchant: Raw merchant name from the parsed email

    Returns:
        Normalized key ('' for empty input)
    """
    if not merchant:
        return ""

    cleaned = merchant.upper().strip()
    cleaned = WHITESPACE_RE.sub(" ", cleaned)
    cleaned = SPECIAL_CHARS_RE.sub("", cleaned)
    # Removing characters can leave double spaces behind
    cleaned = WHITESPACE_RE.sub(" ", cleaned).strip()
    cleaned = TRAILING_CODE_RE.sub("", cleaned)
    cleaned = TRANSACTION_PREFIX_RE.sub("", cleaned)

    return cleaned[:MAX_KEY_LENGTH].strip()


def generate_merchant_pattern(merchant: str) -> str:
    """
    Build a wildcard pattern from the first two significant words.

    "FARMACIA CAROL SUCURSAL" -> "FARMACIA CAROL*"
    "UBER"                    -> "UBER*"

    The pattern is stored as a hint for future fuzzy matching; lookups do not
    evaluate it.
    """
    normalized = normalize_merchant_name(merchant)
    if not normalized:
        return ""

    words = [w for w in normalized.split(" ") if len(w) >= MIN_PATTERN_WORD_LENGTH]
    if len(words) >= 2:
        return f"{' '.join(words[:2])}*"
    return f"{normalized[: MAX_KEY_LENGTH - 1].rstrip()}*"


def first_token(normalized: str) -> str:
    """First word of an already-normalized key ('' when empty)."""
    return normalized.split(" ", 1)[0] if normalized else ""
