"""
Tests for risk register derivation and the evidence threshold policy.
"""

import pytest

from src.triage.config import TriageConfig
from src.triage.context import OperatorSelection, RunContext
from src.triage.derive import (
    CORE_SYSTEM_ORDER,
    derive_risk_register,
    ordered_system_types,
    seed_row,
)
from src.triage.errors import SchemaViolation
from src.triage.evidence import EvidenceDocument, EvidenceItem
from src.triage.policy import GovernancePolicy, apply_policy, best_evidence_for, load_policy
from src.triage.register import (
    RISK_REGISTER_COLUMNS,
    RiskRow,
    new_register,
    parse_risk_register,
    serialize_risk_register,
)
from src.triage.steps import policy_path


def item(item_id, system_type, status="observed", confidence=8, category="core_systems"):
    return EvidenceItem(id=item_id, category=category, system_type=system_type,
                        status=status, confidence=confidence)


def evidence(*items):
    return EvidenceDocument(operator={"slug": "cole-hospitality"}, meta={}, items=list(items))


def open_row(system_type, risk_id=None, severity="High"):
    return RiskRow(
        risk_id=risk_id or f"R-{system_type.upper()}",
        title=f"{system_type} risk",
        system_type=system_type,
        category="Discovery",
        severity=severity,
        likelihood="Medium",
        status="Open",
        owner="CIAG",
        evidence_refs="[]",
        notes="",
    )


@pytest.fixture
def policy():
    return GovernancePolicy(min_confidence=7, required_status="observed",
                            mitigate_status="Mitigated", mitigate_likelihood="Low",
                            notes_tag="policy=threshold-v1")


class TestDeriveRiskRegister:
    """Tests for derive_risk_register."""

    def test_missing_system_type_column(self):
        """Scenario D: no system_type column is fatal."""
        register = parse_risk_register("risk_id,title,status,likelihood,notes,evidence_refs\nR-001,x,Open,Low,,[]\n")
        with pytest.raises(SchemaViolation, match="missing required column: system_type"):
            derive_risk_register(evidence(item("e1", "PMS")), register)

    def test_empty_evidence_rejected(self):
        with pytest.raises(SchemaViolation):
            derive_risk_register(evidence(), new_register())

    def test_seeds_rows_for_each_system_type(self):
        ev = evidence(item("e1", "Payments", status="missing", confidence=0),
                      item("e2", "PMS", status="missing", confidence=0),
                      item("e3", "Kiosk", status="missing", confidence=0))
        derived = derive_risk_register(ev, new_register())

        assert [r.risk_id for r in derived.rows] == ["R-SYS-PMS", "R-SYS-PAYMENTS", "R-SYS-KIOSK"]
        payments = derived.rows[1]
        assert payments.severity == "High"
        assert payments.title == "Payments governance coverage unknown"
        assert payments.status == "Open"
        assert derived.rows[0].severity == "Medium"

    def test_existing_rows_stay_first(self):
        register = new_register([open_row("", risk_id="R-001")])
        derived = derive_risk_register(evidence(item("e1", "PMS", status="missing")), register)
        assert [r.risk_id for r in derived.rows] == ["R-001", "R-SYS-PMS"]

    def test_system_type_case_does_not_duplicate_row(self):
        register = new_register([open_row("pms", risk_id="R-SYS-PMS")])
        derived = derive_risk_register(evidence(item("e1", "PMS", status="missing")), register)
        assert [r.risk_id for r in derived.rows] == ["R-SYS-PMS"]

    def test_mixed_case_evidence_seeds_one_row(self):
        ev = evidence(item("e1", "PMS", status="missing"), item("e2", "pms", status="missing"))
        derived = derive_risk_register(ev, new_register())
        ids = [r.risk_id for r in derived.rows]
        assert ids == ["R-SYS-PMS"]

    def test_observed_evidence_mitigates(self):
        ev = evidence(item("low", "PMS", confidence=3), item("high", "PMS", confidence=9))
        derived = derive_risk_register(ev, new_register([open_row("PMS")]))

        row = derived.rows[0]
        assert row.status == "Mitigated"
        assert row.likelihood == "Low"
        assert row.notes == "derivedFromEvidence=[high]"

    def test_unevidenced_rows_untouched(self):
        ev = evidence(item("e1", "PMS", status="partial"))
        register = new_register([open_row("PMS")])
        derived = derive_risk_register(ev, register)
        assert derived.rows[0] == register.rows[0]

    def test_idempotent(self):
        ev = evidence(item("e1", "PMS"), item("e2", "POS", status="missing"))
        once = derive_risk_register(ev, new_register())
        twice = derive_risk_register(ev, once)
        assert serialize_risk_register(twice) == serialize_risk_register(once)

    def test_input_not_mutated(self):
        register = new_register([open_row("PMS")])
        derive_risk_register(evidence(item("e1", "PMS")), register)
        assert register.rows[0].status == "Open"

    def test_ordered_system_types(self):
        assert ordered_system_types(["Zeta", "PMS", "Alpha", "Payments", "PMS"]) == \
            ["PMS", "Payments", "Alpha", "Zeta"]

    def test_seed_row_defaults(self):
        for system_type in CORE_SYSTEM_ORDER:
            row = seed_row(system_type)
            expected = "High" if system_type in ("Payments", "PCI", "PII") else "Medium"
            assert row.severity == expected
            assert row.owner == "CIAG"
            assert row.evidence_refs == "[]"


class TestBestEvidenceFor:
    """Tests for threshold matching."""

    def test_highest_confidence_wins(self, policy):
        ev = evidence(item("a", "PMS", confidence=7), item("b", "PMS", confidence=10))
        assert best_evidence_for(policy, ev, "PMS").id == "b"

    def test_below_threshold_is_none(self, policy):
        assert best_evidence_for(policy, evidence(item("a", "PMS", confidence=6.9)), "PMS") is None

    def test_threshold_inclusive(self, policy):
        assert best_evidence_for(policy, evidence(item("a", "PMS", confidence=7)), "PMS").id == "a"

    def test_status_must_match(self, policy):
        assert best_evidence_for(policy, evidence(item("a", "PMS", status="partial", confidence=9)), "PMS") is None

    def test_blank_system_type(self, policy):
        assert best_evidence_for(policy, evidence(item("a", "PMS")), "") is None


class TestApplyPolicy:
    """Tests for apply_policy."""

    def test_scenario_a_promotes_row(self, policy):
        ev = evidence(item("pay1", "Payments", confidence=8))
        updated, changed = apply_policy(policy, ev, new_register([open_row("Payments")]))

        row = updated.rows[0]
        assert changed == 1
        assert row.status == "Mitigated"
        assert row.likelihood == "Low"
        assert row.evidence_refs == '["pay1"]'
        assert row.notes == "policy=threshold-v1; derivedFromEvidence=[pay1]"

    def test_scenario_b_below_threshold_unchanged(self, policy):
        register = new_register([open_row("Payments")])
        updated, changed = apply_policy(policy, evidence(item("pay1", "Payments", confidence=5)), register)

        assert changed == 0
        assert updated.rows[0] == register.rows[0]
        assert serialize_risk_register(updated) == serialize_risk_register(register)

    def test_idempotent(self, policy):
        ev = evidence(item("pay1", "Payments", confidence=8))
        once, _ = apply_policy(policy, ev, new_register([open_row("Payments")]))
        twice, changed = apply_policy(policy, ev, once)

        assert changed == 0
        assert serialize_risk_register(twice) == serialize_risk_register(once)

    def test_note_appended_to_existing(self, policy):
        row = open_row("PMS")
        row.notes = "derivedFromEvidence=[e1]"
        updated, _ = apply_policy(policy, evidence(item("e1", "PMS", confidence=9)), new_register([row]))
        assert updated.rows[0].notes == "derivedFromEvidence=[e1] | policy=threshold-v1; derivedFromEvidence=[e1]"

    def test_never_reopens(self, policy):
        row = open_row("PMS")
        row.status = "Mitigated"
        updated, changed = apply_policy(policy, evidence(item("e1", "PMS", status="missing")), new_register([row]))
        assert changed == 0
        assert updated.rows[0].status == "Mitigated"

    def test_promotion_iff_qualifying_evidence(self, policy):
        """A row ends Mitigated exactly when its system type has qualifying evidence."""
        ev = evidence(
            item("a", "PMS", confidence=9),
            item("b", "POS", confidence=6),
            item("c", "HRIS", status="partial", confidence=10),
            item("d", "WFM", confidence=7),
        )
        rows = [open_row(s) for s in ("PMS", "POS", "HRIS", "WFM", "Scheduling")]
        updated, _ = apply_policy(policy, ev, new_register(rows))

        for row in updated.rows:
            qualifies = best_evidence_for(policy, ev, row.system_type) is not None
            assert (row.status == "Mitigated") == qualifies

    def test_missing_column(self, policy):
        register = parse_risk_register("risk_id,system_type,status,likelihood,notes\nR-1,PMS,Open,Low,\n")
        with pytest.raises(SchemaViolation, match="missing required column: evidence_refs"):
            apply_policy(policy, evidence(item("a", "PMS")), register)

    def test_no_rows(self, policy):
        with pytest.raises(SchemaViolation, match="no rows"):
            apply_policy(policy, evidence(item("a", "PMS")), new_register())


class TestLoadPolicy:
    """Tests for the governance policy file."""

    def test_shipped_policy(self, tmp_path):
        ctx = RunContext(root=tmp_path, operator=OperatorSelection(name="x", slug="x"), config=TriageConfig())
        policy = load_policy(policy_path(ctx))

        assert policy.min_confidence == 7
        assert policy.required_status == "observed"
        assert policy.mitigate_status == "Mitigated"
        assert policy.mitigate_likelihood == "Low"
        assert policy.notes_tag == "policy=threshold-v1"
        assert policy.id == "governance_policy_threshold_v1"

    def test_defaults_for_mapping(self):
        policy = GovernancePolicy.from_dict({"threshold": {"minConfidence": 5}})
        assert policy.min_confidence == 5
        assert policy.mitigate_status == "Mitigated"
        assert policy.notes_tag == "policy=threshold-v1"

    def test_min_confidence_required(self):
        with pytest.raises(SchemaViolation, match="minConfidence"):
            GovernancePolicy.from_dict({"threshold": {"requiredStatus": "observed"}})

    def test_register_columns_constant(self):
        assert RISK_REGISTER_COLUMNS[2] == "system_type"
