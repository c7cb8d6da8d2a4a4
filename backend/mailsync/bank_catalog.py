"""
Supported Bank Catalog
Built-in sender addresses and subject keywords for the banks whose
notification emails can be imported, keyed by ISO country code.

New mailbox connections get one BankFilterRule per bank of the user's country;
users can edit the rules afterwards.
"""

from dataclasses import dataclass, field

DEFAULT_COUNTRY = "DO"


@dataclass(frozen=True)
class SupportedBank:
    name: str
    country: str
    sender_emails: tuple = field(default_factory=tuple)
    subject_keywords: tuple = field(default_factory=tuple)

    def to_filter(self) -> dict:
        return {
            "bank_name": self.name,
            "sender_emails": list(self.sender_emails),
            "subject_keywords": list(self.subject_keywords),
        }


_DO_KEYWORDS = ("consumo", "compra", "transaccion", "cargo")

SUPPORTED_BANKS = {
    "DO": (
        SupportedBank(
            "Banco Popular Dominicano",
            "DO",
            ("notificaciones@popularenlinea.com", "alertas@bpd.com.do", "notificaciones@bpd.com.do"),
            _DO_KEYWORDS + ("retiro", "pago"),
        ),
        SupportedBank(
            "Banreservas",
            "DO",
            (
                "notificaciones@banreservas.com",
                "alertas@banreservas.com",
                "notificaciones@banreservas.com.do",
            ),
            _DO_KEYWORDS + ("retiro",),
        ),
        SupportedBank(
            "BHD Leon",
            "DO",
            ("alertas@bhdleon.com.do", "notificaciones@bhdleon.com.do", "bhdalertas@bhdleon.com.do"),
            _DO_KEYWORDS + ("retiro",),
        ),
        SupportedBank(
            "Scotiabank Republica Dominicana",
            "DO",
            ("alertas@scotiabank.com", "notificaciones.do@scotiabank.com", "noreply@scotiabank.com.do"),
            _DO_KEYWORDS + ("retiro",),
        ),
        SupportedBank(
            "Asociacion Popular de Ahorros y Prestamos (APAP)",
            "DO",
            ("no-reply@apap.com.do", "alertas@apap.com.do", "notificaciones@apap.com.do"),
            _DO_KEYWORDS + ("retiro",),
        ),
        SupportedBank(
            "Banco Santa Cruz",
            "DO",
            ("alertas@bsc.com.do", "notificaciones@bsc.com.do", "noreply@bsc.com.do"),
            _DO_KEYWORDS,
        ),
        SupportedBank(
            "Banco BDI", "DO", ("alertas@bdi.com.do", "notificaciones@bdi.com.do"), _DO_KEYWORDS
        ),
        SupportedBank(
            "Banco Caribe",
            "DO",
            ("alertas@bancocaribe.com.do", "notificaciones@bancocaribe.com.do"),
            _DO_KEYWORDS,
        ),
        SupportedBank(
            "Banco Lopez de Haro", "DO", ("alertas@blh.com.do", "notificaciones@blh.com.do"), _DO_KEYWORDS
        ),
        SupportedBank(
            "Banco Promerica",
            "DO",
            ("alertas@promerica.com.do", "notificaciones@promerica.com.do"),
            _DO_KEYWORDS,
        ),
    ),
}

# Country names as users type them -> ISO code
COUNTRY_CODES = {
    "república dominicana": "DO",
    "republica dominicana": "DO",
    "dominican republic": "DO",
    "mexico": "MX",
    "méxico": "MX",
    "colombia": "CO",
    "estados unidos": "US",
    "united states": "US",
    "españa": "ES",
    "spain": "ES",
    "puerto rico": "PR",
    "argentina": "AR",
    "chile": "CL",
    "peru": "PE",
    "perú": "PE",
    "venezuela": "VE",
    "ecuador": "EC",
    "guatemala": "GT",
    "honduras": "HN",
    "el salvador": "SV",
    "nicaragua": "NI",
    "costa rica": "CR",
    "panama": "PA",
    "panamá": "PA",
}


def map_country_to_code(country: str = None) -> str:
    """Country name (or ISO code) -> ISO code; unknown or empty -> DO."""
    if not country:
        return DEFAULT_COUNTRY

    value = country.strip()
    if len(value) == 2 and value.isalpha():
        return value.upper()
    return COUNTRY_CODES.get(value.lower(), DEFAULT_COUNTRY)


def get_supported_banks(country_code: str = DEFAULT_COUNTRY) -> tuple:
    return SUPPORTED_BANKS.get(country_code.upper(), ())


def default_bank_filters(country: str = None) -> list[dict]:
    """Filter rule dicts for every supported bank of a country (name or code)."""
    return [bank.to_filter() for bank in get_supported_banks(map_country_to_code(country))]
