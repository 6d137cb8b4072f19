"""Tests for pairwise evidence extraction."""

from models.domain import Contact, SignalType
from services.evidence_extractor import (
    blocking_keys,
    corporate_domain,
    evidence_signature,
    extract_evidence,
    normalize_company,
    seniority_band,
)


def contact(**kwargs):
    kwargs.setdefault("account_id", "acct-1")
    return Contact(**kwargs)


def by_type(signals):
    return {s.signal_type: s for s in signals}


class TestNormalization:

    def test_company_suffixes_and_case_are_ignored(self):
        assert normalize_company("Acme, Inc.") == "acme"
        assert normalize_company("  ACME   Corp ") == "acme"
        assert normalize_company(None) == ""

    def test_generic_mail_providers_are_not_corporate(self):
        assert corporate_domain("a@gmail.com") == ""
        assert corporate_domain("a@Acme.com") == "acme.com"
        assert corporate_domain("not-an-email") == ""

    def test_seniority_band_uses_first_matching_band(self):
        assert seniority_band("Chief Technology Officer") == "C-level"
        assert seniority_band("SVP, Sales") == "VP"
        assert seniority_band("Senior Software Engineer") == "Senior"
        assert seniority_band("Leadership coach") is None
        assert seniority_band("") is None


class TestExtractEvidence:

    def test_same_company_and_domain(self):
        """Colleagues at Acme with acme.com emails score both signals fully."""
        a = contact(id="a", company="Acme", email="a@acme.com")
        b = contact(id="b", company="Acme Inc", email="b@acme.com")

        signals = by_type(extract_evidence(a, b))

        assert signals[SignalType.SAME_COMPANY].score == 1.0
        assert signals[SignalType.SAME_EMAIL_DOMAIN].score == 1.0

    def test_free_mail_domain_is_not_evidence(self):
        a = contact(id="a", email="a@gmail.com")
        b = contact(id="b", email="b@gmail.com")

        assert extract_evidence(a, b) == []

    def test_location_city_state_country(self):
        base = dict(country="USA")
        city = extract_evidence(
            contact(id="a", city="Austin", state="TX", **base),
            contact(id="b", city="austin", state="TX", **base),
        )
        state = extract_evidence(
            contact(id="a", city="Austin", state="TX", **base),
            contact(id="b", city="Dallas", state="TX", **base),
        )
        country = extract_evidence(
            contact(id="a", city="Austin", state="TX", **base),
            contact(id="b", city="Boston", state="MA", **base),
        )

        assert by_type(city)[SignalType.SAME_LOCATION].score == 1.0
        assert by_type(state)[SignalType.SAME_LOCATION].score == 0.6
        assert by_type(country)[SignalType.SAME_LOCATION].score == 0.3

    def test_conflicting_country_suppresses_location(self):
        a = contact(id="a", city="Paris", country="France")
        b = contact(id="b", city="Paris", country="USA")

        assert SignalType.SAME_LOCATION not in by_type(extract_evidence(a, b))

    def test_same_city_in_different_states_is_not_a_city_match(self):
        a = contact(id="a", city="Portland", state="OR", country="USA")
        b = contact(id="b", city="Portland", state="ME", country="USA")

        signal = by_type(extract_evidence(a, b))[SignalType.SAME_LOCATION]

        assert signal.score == 0.3

    def test_role_similarity_is_a_half_score(self):
        a = contact(id="a", position="Director of Sales")
        b = contact(id="b", position="Engineering Director")

        signal = by_type(extract_evidence(a, b))[SignalType.ROLE_SIMILARITY]

        assert signal.score == 0.5

    def test_mutual_connections_saturate_at_five(self):
        a = contact(id="a")
        b = contact(id="b")

        two = by_type(extract_evidence(a, b, {"x", "y", "b"}, {"x", "y", "a"}))
        many = by_type(extract_evidence(a, b, set("pqrstuv"), set("pqrstuv")))

        assert two[SignalType.MUTUAL_CONNECTIONS].score == 0.4
        assert many[SignalType.MUTUAL_CONNECTIONS].score == 1.0

    def test_signals_come_back_in_declaration_order(self):
        a = contact(id="a", company="Acme", email="a@acme.com", city="Austin", position="VP Sales")
        b = contact(id="b", company="Acme", email="b@acme.com", city="Austin", position="VP Product")

        types = [s.signal_type for s in extract_evidence(a, b, {"x"}, {"x"})]

        assert types == list(SignalType)

    def test_all_scores_in_unit_interval(self):
        a = contact(id="a", company="Acme", email="a@acme.com", state="CA", country="USA", position="CEO")
        b = contact(id="b", company="acme", email="b@acme.com", state="CA", country="USA", position="CTO")

        for signal in extract_evidence(a, b, set("abcdefgh"), set("abcdefgh")):
            assert 0.0 < signal.score <= 1.0


class TestSignatures:

    def test_signature_is_rounded_and_ordered(self):
        a = contact(id="a", company="Acme")
        b = contact(id="b", company="Acme")

        assert evidence_signature(extract_evidence(a, b)) == (("same_company", 1.0),)

    def test_blocking_keys(self):
        keys = blocking_keys(contact(id="a", company="Acme Corp", email="a@acme.com"))

        assert keys == {"company:acme", "domain:acme.com"}
        assert blocking_keys(contact(id="b", email="b@gmail.com")) == set()
