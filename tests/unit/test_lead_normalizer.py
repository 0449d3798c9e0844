"""
Unit Tests for LeadNormalizer and lead request validation
"""
import pytest
from pydantic import ValidationError

from leadcall.domain.models.lead import LeadCreateRequest, LeadValidationError
from leadcall.domain.services.lead_normalizer import DEFAULT_VALID_SOURCES, LeadNormalizer


class TestNormalizePhone:
    """Tests for phone normalization"""

    @pytest.mark.parametrize("raw,expected", [
        ("9876543210", "+919876543210"),
        ("98765 43210", "+919876543210"),
        ("(987) 654-3210", "+919876543210"),
        ("+91 98765 43210", "+919876543210"),
        ("919876543210", "+919876543210"),
        ("+1 415 555 0100", "+14155550100"),
    ])
    def test_phone_forms(self, raw, expected):
        """Test that punctuation is stripped and national numbers get a country code"""
        assert LeadNormalizer().normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "---", "abc"])
    def test_empty_phone(self, raw):
        """Test that phones without digits normalize to None"""
        assert LeadNormalizer().normalize_phone(raw) is None

    def test_custom_country_code(self):
        """Test that the default country code is configurable"""
        assert LeadNormalizer(default_country_code="1").normalize_phone("4155550100") == "+14155550100"


class TestNormalize:
    """Tests for full lead normalization"""

    def test_defaults_applied(self):
        """Test that company and email are defaulted and canonicalized"""
        request = LeadCreateRequest(source="meta_ads", name="Asha Rao", email="  Asha@Example.COM ")

        lead = LeadNormalizer().normalize(request)

        assert lead.last_name == "Asha Rao"
        assert lead.email == "asha@example.com"
        assert lead.phone is None
        assert lead.company == "Not Provided"
        assert lead.lead_source == "meta_ads"

    def test_crm_field_names(self):
        """Test rendering with CRM field API names including extras"""
        request = LeadCreateRequest(
            source="organic",
            name="Ravi",
            phone="9876543210",
            company="Acme",
            extra={"Budget": "50L"}
        )

        fields = LeadNormalizer().normalize(request).to_crm_fields()

        assert fields == {
            "Last_Name": "Ravi",
            "Email": None,
            "Phone": "+919876543210",
            "Company": "Acme",
            "Lead_Source": "organic",
            "Budget": "50L",
        }

    def test_identity_required(self):
        """Test that a lead without email and phone is rejected"""
        request = LeadCreateRequest(source="organic", name="Ravi", email="", phone="  ")

        with pytest.raises(LeadValidationError, match="Either email or phone is required"):
            LeadNormalizer().normalize(request)

    def test_phone_without_digits_is_no_identity(self):
        """Test that a phone with no digits does not count as an identity"""
        request = LeadCreateRequest(source="Website", name="Asha", phone="---")

        with pytest.raises(LeadValidationError, match="Either email or phone is required"):
            LeadNormalizer().normalize(request)

    def test_valid_sources_default_and_override(self):
        """Test that the source list is configurable and copied on read"""
        assert LeadNormalizer().get_valid_sources() == DEFAULT_VALID_SOURCES

        normalizer = LeadNormalizer(valid_sources=["Walk-in"])
        sources = normalizer.get_valid_sources()
        sources.append("Mutated")

        assert normalizer.get_valid_sources() == ["Walk-in"]


class TestLeadCreateRequest:
    """Tests for request validation"""

    def test_short_name_rejected(self):
        """Test that names shorter than two characters fail validation"""
        with pytest.raises(ValidationError):
            LeadCreateRequest(source="organic", name="R", phone="9876543210")

    def test_missing_source_rejected(self):
        """Test that source is required"""
        with pytest.raises(ValidationError):
            LeadCreateRequest(name="Ravi", phone="9876543210")

    def test_invalid_email_rejected(self):
        """Test that a malformed email fails validation"""
        with pytest.raises(ValidationError):
            LeadCreateRequest(source="organic", name="Ravi", email="not-an-email")

    def test_unknown_fields_ignored(self):
        """Test that unexpected keys are dropped"""
        request = LeadCreateRequest(source="organic", name="Ravi", phone="1", utm_campaign="x")

        assert not hasattr(request, "utm_campaign")
