"""
Evidence Extractor

Pairwise similarity signals between two contacts. Everything here is pure and
deterministic: no I/O, no clocks, no randomness.
"""

import re
from typing import Iterable, List, Optional, Set, Tuple

from models.domain import Contact, Signal, SignalType

# Free mail providers never count as a shared employer domain
GENERIC_EMAIL_DOMAINS = {
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "aol.com",
    "icloud.com", "live.com", "msn.com", "comcast.net", "verizon.net",
    "proton.me", "protonmail.com",
}

COMPANY_SUFFIXES = {"inc", "corp", "corporation", "llc", "ltd", "limited", "co"}

# Ordered seniority bands; a position belongs to the first band it matches
SENIORITY_BANDS: List[Tuple[str, List[str]]] = [
    ("C-level", ["ceo", "cto", "cfo", "coo", "cmo", "chief", "president", "founder", "owner"]),
    ("VP", ["vp", "svp", "evp", "vice president"]),
    ("Director", ["director"]),
    ("Head/Lead", ["head", "lead", "principal"]),
    ("Manager", ["manager", "supervisor"]),
    ("Senior", ["senior", "sr"]),
    ("Engineer/IC", ["engineer", "developer", "analyst", "designer", "specialist", "associate", "consultant"]),
]

MUTUAL_SATURATION = 5
ROLE_SIMILARITY_SCORE = 0.5

EvidenceSignature = Tuple[Tuple[str, float], ...]


def normalize_company(company: Optional[str]) -> str:
    """Lower-case, collapse whitespace and strip trailing corporate suffixes"""
    if not company:
        return ""
    words = re.sub(r"[.,]", " ", company.lower()).split()
    while words and words[-1] in COMPANY_SUFFIXES:
        words = words[:-1]
    return " ".join(words)


def email_domain(email: Optional[str]) -> str:
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()


def corporate_domain(email: Optional[str]) -> str:
    """Email domain, or '' for free providers"""
    domain = email_domain(email)
    return "" if domain in GENERIC_EMAIL_DOMAINS else domain


def _norm(value: Optional[str]) -> str:
    return " ".join(value.lower().split()) if value else ""


def seniority_band(position: Optional[str]) -> Optional[str]:
    text = _norm(position)
    if not text:
        return None
    for band, keywords in SENIORITY_BANDS:
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword)}\b", text):
                return band
    return None


def _company_signal(a: Contact, b: Contact) -> Optional[Signal]:
    company_a, company_b = normalize_company(a.company), normalize_company(b.company)
    if company_a and company_a == company_b:
        return Signal(SignalType.SAME_COMPANY, 1.0, f"Both work at {a.company.strip()}")
    return None


def _domain_signal(a: Contact, b: Contact) -> Optional[Signal]:
    domain_a, domain_b = corporate_domain(a.email), corporate_domain(b.email)
    if domain_a and domain_a == domain_b:
        return Signal(SignalType.SAME_EMAIL_DOMAIN, 1.0, f"Both use the {domain_a} email domain")
    return None


def _contradicts(x: str, y: str) -> bool:
    return bool(x and y and x != y)


def _location_signal(a: Contact, b: Contact) -> Optional[Signal]:
    city_a, city_b = _norm(a.city), _norm(b.city)
    state_a, state_b = _norm(a.state), _norm(b.state)
    country_a, country_b = _norm(a.country), _norm(b.country)

    if _contradicts(country_a, country_b):
        return None
    if city_a and city_a == city_b and not _contradicts(state_a, state_b):
        return Signal(SignalType.SAME_LOCATION, 1.0, f"Both based in {a.city.strip()}")
    if state_a and state_a == state_b:
        return Signal(SignalType.SAME_LOCATION, 0.6, f"Both based in {a.state.strip()}")
    if country_a and country_a == country_b:
        return Signal(SignalType.SAME_LOCATION, 0.3, f"Both based in {a.country.strip()}")
    return None


def _role_signal(a: Contact, b: Contact) -> Optional[Signal]:
    band_a, band_b = seniority_band(a.position), seniority_band(b.position)
    if band_a and band_a == band_b:
        return Signal(SignalType.ROLE_SIMILARITY, ROLE_SIMILARITY_SCORE, f"Both hold {band_a} roles")
    return None


def _mutual_signal(a: Contact, b: Contact, neighbors_a: Set[str], neighbors_b: Set[str]) -> Optional[Signal]:
    shared = (set(neighbors_a) & set(neighbors_b)) - {a.id, b.id}
    if not shared:
        return None
    score = min(1.0, len(shared) / MUTUAL_SATURATION)
    noun = "connection" if len(shared) == 1 else "connections"
    return Signal(SignalType.MUTUAL_CONNECTIONS, score, f"{len(shared)} mutual {noun}")


def extract_evidence(
    a: Contact,
    b: Contact,
    neighbors_a: Iterable[str] = (),
    neighbors_b: Iterable[str] = (),
) -> List[Signal]:
    """
    Compute the similarity signals between two contacts

    Args:
        a: First contact
        b: Second contact
        neighbors_a: Ids of contacts connected to ``a``
        neighbors_b: Ids of contacts connected to ``b``

    Returns:
        Signals with a positive score, in signal declaration order
    """
    candidates = [
        _company_signal(a, b),
        _domain_signal(a, b),
        _location_signal(a, b),
        _role_signal(a, b),
        _mutual_signal(a, b, set(neighbors_a), set(neighbors_b)),
    ]
    return [signal for signal in candidates if signal is not None and signal.score > 0]


def evidence_signature(signals: Iterable[Signal]) -> EvidenceSignature:
    return tuple((s.signal_type.value, round(s.score, 2)) for s in signals)


def blocking_keys(contact: Contact) -> Set[str]:
    """Keys used to pre-filter pairs on large accounts"""
    keys = set()
    company = normalize_company(contact.company)
    if company:
        keys.add(f"company:{company}")
    domain = corporate_domain(contact.email)
    if domain:
        keys.add(f"domain:{domain}")
    return keys
