"""Tests for the certification analyzer."""

from datetime import datetime

from credscore.analyzers.certification import (
    analyze_certifications,
    classify_certificate,
    expiring_certifications,
    years_before,
)

from conftest import NOW


def _stored(name, issuer, issued, expires=None, verified=False, skills=()):
    return {
        "name": name,
        "issuer": issuer,
        "issue_date": issued,
        "expiry_date": expires,
        "verified": verified,
        "skills": list(skills),
    }


class TestClassifyCertificate:
    """Issuer trust and credential verification for one certificate."""

    def test_verified_trusted_issuer(self, reference, aws_certificate):
        info = classify_certificate(aws_certificate, reference, NOW)

        assert info["issuer"] == "Amazon Web Services (AWS)"
        assert info["issuer_type"] == "cloud_certification"
        assert info["verified"] is True
        assert info["verification_method"] == "trusted_issuer"
        assert info["trust_score"] == 100  # 95 + credential bonus, capped
        assert info["skills"] == ["AWS"]
        assert info["warnings"] == []

    def test_unknown_issuer(self, reference):
        info = classify_certificate(
            {"name": "Certified Widget Polisher", "issuer": "Widget Guild", "issue_date": "2023-01-01",
             "credential_url": "https://widgetguild.example/cert/1"},
            reference,
            NOW,
        )

        assert info["issuer"] is None
        assert info["issuer_type"] == "other"
        assert info["verified"] is False
        assert info["trust_score"] == 50
        assert info["verification_method"] == "manual_review"
        assert info["warnings"] == ["Issuer not in trusted list - manual verification required"]

    def test_expired_penalty(self, reference, aws_certificate):
        aws_certificate["issue_date"] = "2021-01-01"
        aws_certificate["expiry_date"] = "2024-01-01"

        info = classify_certificate(aws_certificate, reference, NOW)

        assert info["trust_score"] == 85
        assert info["warnings"] == ["Certificate has expired"]

    def test_url_on_other_domain(self, reference, aws_certificate):
        aws_certificate["credential_url"] = "https://certs.example.com/AWS-123"

        info = classify_certificate(aws_certificate, reference, NOW)

        assert info["verified"] is False
        assert info["trust_score"] == 95
        assert info["warnings"] == ["Credential URL does not match issuer domain aws.amazon.com"]

    def test_credential_id_without_url(self, reference, aws_certificate):
        del aws_certificate["credential_url"]

        info = classify_certificate(aws_certificate, reference, NOW)

        assert info["verified"] is False
        assert info["warnings"] == ["Credential ID provided but no verification URL"]

    def test_issuer_subdomain(self, reference):
        info = classify_certificate(
            {"name": "Machine Learning", "issuer": "Coursera", "issue_date": "2023-01-01",
             "credential_url": "https://www.coursera.org/verify/ABC"},
            reference,
            NOW,
        )

        assert info["verified"] is True
        assert info["skills"] == ["Machine Learning"]

    def test_lookalike_domain_rejected(self, reference):
        info = classify_certificate(
            {"name": "Machine Learning", "issuer": "Coursera", "issue_date": "2023-01-01",
             "credential_url": "https://coursera.org.evil.example/verify/ABC"},
            reference,
            NOW,
        )

        assert info["verified"] is False


class TestAnalyzeCertifications:
    def test_single_verified_certificate(self, reference):
        records = [_stored("AWS Certified Solutions Architect - Associate", "Amazon Web Services",
                           "2023-12-15T00:00:00", "2026-12-15T00:00:00", verified=True, skills=["AWS"])]

        result = analyze_certifications(records, reference, NOW)

        # count 6 + verified 30 + recent 10 + diversity 2
        assert result.subscore == 48
        assert result.verified
        assert result.metrics["trusted_issuers"] == 1
        assert result.metrics["recent_certifications"] == 1
        assert result.metrics["diversity_score"] == 10
        assert result.metrics["by_type"] == {"cloud_certification": 1}

    def test_mixed_certificates(self, reference):
        records = [
            _stored("AWS Certified Developer", "Amazon Web Services", "2023-12-15T00:00:00",
                    verified=True, skills=["AWS"]),
            _stored("Machine Learning", "Coursera", "2019-03-01T00:00:00", skills=["Machine Learning"]),
        ]

        result = analyze_certifications(records, reference, NOW)

        # count 12 + verified 15 + recent 10 + diversity 4
        assert result.subscore == 41
        assert result.metrics["skills"] == ["AWS", "Machine Learning"]
        assert result.metrics["by_year"] == {"2019": 1, "2023": 1}

    def test_skills_extracted_when_not_stored(self, reference):
        record = _stored("Kubernetes Administrator", "CNCF", "2024-01-01T00:00:00")
        del record["skills"]

        result = analyze_certifications([record], reference, NOW)

        assert result.metrics["skills"] == ["Kubernetes"]

    def test_no_certificates(self, reference):
        result = analyze_certifications([], reference, NOW)

        assert result.subscore == 0
        assert result.limitations == ["no certifications"]

    def test_expired_counted(self, reference):
        records = [_stored("Old cert", "Oracle", "2015-01-01T00:00:00", "2018-01-01T00:00:00")]
        assert analyze_certifications(records, reference, NOW).metrics["expired"] == 1


class TestExpiring:
    def test_soonest_first_within_window(self):
        records = [
            _stored("later", "X", "2023-01-01", "2024-08-30"),
            _stored("soon", "X", "2023-01-01", "2024-07-01"),
            _stored("far", "X", "2023-01-01", "2025-06-01"),
            _stored("expired", "X", "2020-01-01", "2024-01-01"),
            _stored("forever", "X", "2020-01-01"),
        ]

        expiring = expiring_certifications(records, NOW)

        assert [r["name"] for r in expiring] == ["soon", "later"]

    def test_custom_window(self):
        records = [_stored("far", "X", "2023-01-01", "2025-06-01")]
        assert len(expiring_certifications(records, NOW, days_ahead=365)) == 1


class TestYearsBefore:
    def test_leap_day(self):
        assert years_before(datetime(2024, 2, 29), 2) == datetime(2022, 2, 28)
