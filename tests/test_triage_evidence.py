"""
Tests for the evidence store.

Validates id stability, seeding idempotence, status monotonicity and intake
application.
"""

import hashlib
import logging

import pytest

from src.triage.context import OperatorSelection
from src.triage.errors import InvalidIdentity, SchemaViolation
from src.triage.evidence import (
    PLACEHOLDER_CATALOG,
    STATUS_MISSING,
    STATUS_OBSERVED,
    EvidenceDocument,
    apply_intake_response,
    assert_no_regression,
    build_intake_template,
    compute_evidence_id,
    seed_evidence,
)

T0 = "2026-01-01T00:00:00+00:00"
T1 = "2026-01-02T00:00:00+00:00"
T2 = "2026-01-03T00:00:00+00:00"


class TestEvidenceId:
    """Tests for the content-derived id contract."""

    def test_sha1_of_pipe_joined_fields(self):
        expected = hashlib.sha1(b"cole|core_systems|PMS|||PMS vendor/product not yet evidenced").hexdigest()
        assert compute_evidence_id(
            "cole", "core_systems", "PMS", None, None, "PMS vendor/product not yet evidenced"
        ) == expected

    def test_none_and_empty_string_are_equivalent(self):
        assert compute_evidence_id("s", "c", "PMS", None, None, "x") == \
            compute_evidence_id("s", "c", "PMS", "", "", "x")

    def test_field_order_matters(self):
        assert compute_evidence_id("s", "c", "PMS", "a", "b", "x") != \
            compute_evidence_id("s", "c", "PMS", "b", "a", "x")


class TestSeedEvidence:
    """Tests for seeding and re-seeding."""

    def test_new_document(self, operator):
        doc = seed_evidence(operator, now=T0)

        assert doc.slug == operator.slug
        assert len(doc.items) == len(PLACEHOLDER_CATALOG) == 9
        assert len(set(doc.ids())) == 9
        assert all(it.status == STATUS_MISSING and it.confidence == 0 for it in doc.items)
        assert doc.meta["createdAt"] == T0
        assert doc.meta["updatedAt"] == T0

    def test_operator_locations_numeric(self, operator):
        doc = seed_evidence(operator, now=T0)
        assert doc.operator == {"name": "Cole Hospitality", "slug": "cole-hospitality", "locations": 42}

    def test_reseed_without_changes_returns_existing(self, operator):
        """Scenario C: seeding twice leaves item count, ids and timestamps unchanged."""
        first = seed_evidence(operator, now=T0)
        second = seed_evidence(operator, existing=first, now=T1)

        assert second is first
        assert second.ids() == first.ids()
        assert second.meta["updatedAt"] == T0

    def test_reseed_adds_missing_placeholders_only(self, operator):
        first = seed_evidence(operator, now=T0)
        dropped = first.items.pop()
        second = seed_evidence(operator, existing=first, now=T1)

        assert len(second.items) == 9
        assert second.items[-1].id == dropped.id
        assert second.meta["createdAt"] == T0
        assert second.meta["updatedAt"] == T1

    def test_reseed_preserves_observed_items(self, operator, intake_response):
        """Re-seeding after intake never regresses an observed item."""
        seeded = seed_evidence(operator, now=T0)
        applied = apply_intake_response(seeded, intake_response, "intake.json", now=T1)
        reseeded = seed_evidence(operator, existing=applied, now=T2)

        pms = [it for it in reseeded.items if it.system_type == "PMS"]
        assert all(it.status == STATUS_OBSERVED and it.vendor == "Oracle" for it in pms)
        assert_no_regression(applied, reseeded)

    def test_empty_slug_rejected(self):
        with pytest.raises(InvalidIdentity):
            seed_evidence(OperatorSelection(name="x", slug=""))

    def test_slug_mismatch_rejected(self, operator):
        other = seed_evidence(OperatorSelection(name="Harbor", slug="harbor-inns"), now=T0)
        with pytest.raises(InvalidIdentity):
            seed_evidence(operator, existing=other)


class TestDocumentModel:
    """Tests for EvidenceDocument serialization."""

    def test_dict_round_trip(self, operator):
        doc = seed_evidence(operator, now=T0)
        data = doc.to_dict()
        assert EvidenceDocument.from_dict(data).to_dict() == data

    def test_unknown_item_keys_kept(self, operator):
        data = seed_evidence(operator, now=T0).to_dict()
        data["items"][0]["reviewer"] = "alice"
        assert EvidenceDocument.from_dict(data).to_dict()["items"][0]["reviewer"] == "alice"

    def test_missing_items_key_rejected(self, operator):
        data = seed_evidence(operator, now=T0).to_dict()
        del data["items"]
        with pytest.raises(SchemaViolation, match="missing required key"):
            EvidenceDocument.from_dict(data)

    def test_bad_status_rejected(self, operator):
        data = seed_evidence(operator, now=T0).to_dict()
        data["items"][0]["status"] = "confirmed"
        with pytest.raises(SchemaViolation):
            EvidenceDocument.from_dict(data)

    def test_system_types_first_seen_order(self, operator):
        doc = seed_evidence(operator, now=T0)
        assert doc.system_types() == ["PMS", "POS", "HRIS", "WFM", "Scheduling", "Payments", "Other"]


class TestApplyIntake:
    """Tests for intake application."""

    def test_fills_matching_items(self, operator, intake_response):
        seeded = seed_evidence(operator, now=T0)
        applied = apply_intake_response(seeded, intake_response, "fixtures/intake.json", now=T1)

        pms = applied.items_for("PMS")[0]
        assert pms.vendor == "Oracle"
        assert pms.product == "OPERA Cloud"
        assert pms.source.url == "https://example.com/pms"
        assert pms.source.captured_at == T1
        assert pms.confidence == 9
        assert pms.status == STATUS_OBSERVED

    def test_null_means_no_update(self, operator, intake_response):
        seeded = seed_evidence(operator, now=T0)
        applied = apply_intake_response(seeded, intake_response, "intake.json", now=T1)

        payments = applied.items_for("Payments")
        assert len(payments) == 2
        assert all(it.vendor == "Toast" and it.status == STATUS_OBSERVED for it in payments)
        # notes were null in the intake, so the placeholder notes remain
        assert payments[0].notes.startswith("PCI adjacency")

    def test_null_system_block_skipped(self, operator, intake_response):
        applied = apply_intake_response(seed_evidence(operator, now=T0), intake_response, "i.json", now=T1)
        assert all(it.status == STATUS_MISSING for it in applied.items_for("HRIS"))

    def test_input_not_mutated(self, operator, intake_response):
        seeded = seed_evidence(operator, now=T0)
        apply_intake_response(seeded, intake_response, "intake.json", now=T1)
        assert all(it.status == STATUS_MISSING for it in seeded.items)

    def test_meta_audit_fields(self, operator, intake_response):
        applied = apply_intake_response(seed_evidence(operator, now=T0), intake_response, "intake.json", now=T1)

        assert applied.meta["intakeAppliedAt"] == T1
        assert applied.meta["intakeSource"] == "intake.json"
        assert applied.meta["pciScope"] == "SAQ-D"
        assert applied.meta["aiInventory"]["aiEnabledTools"] == ["ChatGPT"]
        assert applied.meta["createdAt"] == T0

    def test_reapply_identical_intake_is_noop(self, operator, intake_response):
        applied = apply_intake_response(seed_evidence(operator, now=T0), intake_response, "intake.json", now=T1)
        again = apply_intake_response(applied, intake_response, "intake.json", now=T2)

        assert again is applied
        assert again.meta["intakeAppliedAt"] == T1

    def test_unmatched_system_warns(self, operator, caplog):
        intake = {"systems": {"CRM": {"vendor": "Salesforce"}}}
        with caplog.at_level(logging.WARNING):
            apply_intake_response(seed_evidence(operator, now=T0), intake, "intake.json", now=T1)
        assert "CRM" in caplog.text

    def test_invalid_intake_rejected(self, operator):
        intake = {"systems": {"PMS": {"confidence": 11}}}
        with pytest.raises(SchemaViolation):
            apply_intake_response(seed_evidence(operator, now=T0), intake, "intake.json")

    def test_intake_without_systems_rejected(self, operator):
        with pytest.raises(SchemaViolation, match="systems"):
            apply_intake_response(seed_evidence(operator, now=T0), {}, "intake.json")


class TestNoRegression:
    """Tests for the status monotonicity guard."""

    def test_regression_detected(self, operator, intake_response):
        seeded = seed_evidence(operator, now=T0)
        applied = apply_intake_response(seeded, intake_response, "intake.json", now=T1)
        with pytest.raises(SchemaViolation, match="regress"):
            assert_no_regression(applied, seeded)

    def test_dropped_item_detected(self, operator):
        seeded = seed_evidence(operator, now=T0)
        shorter = EvidenceDocument.from_dict(seeded.to_dict())
        shorter.items.pop(0)
        with pytest.raises(SchemaViolation, match="dropped"):
            assert_no_regression(seeded, shorter)

    def test_no_previous_document(self, operator):
        assert_no_regression(None, seed_evidence(operator, now=T0))


class TestIntakeTemplate:
    """Tests for the blank intake response."""

    def test_systems_and_defaults(self, operator):
        template = build_intake_template(operator, now=T0)

        assert list(template["systems"]) == ["PMS", "POS", "HRIS", "WFM", "Scheduling", "Payments", "Other"]
        assert template["systems"]["PMS"]["vendor"] is None
        assert template["systems"]["PMS"]["confidence"] == 7
        assert "pci" in template["systems"]["Payments"]
        assert template["systems"]["Other"]["aiEnabledFeatures"] == []
        assert template["aiInventory"]["confidence"] == 7
        assert template["operator"]["slug"] == operator.slug
