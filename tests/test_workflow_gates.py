"""
Tests — workflow tables and pure gate evaluators.

Evaluators run on transient Project objects; nothing here touches the DB.
"""

import pytest

from fulfillment.core.workflow import (
    BILLING_GUARDED_STATUSES,
    NON_QUOTE_ONLY_STATUSES,
    QUOTE_ONLY_STATUSES,
    Department,
    ProjectStatus,
    canonical_department,
    canonical_departments,
    initial_revision_status,
    intake_status,
    is_status_valid_for_type,
    resolve_auto_advance,
)
from fulfillment.models.project import (
    MockupVersion,
    PaymentVerification,
    Project,
    ProjectAcknowledgement,
)
from fulfillment.services.gates import (
    Gate,
    acknowledgement_missing,
    billing_missing,
    evaluate_gates,
    first_gate_block,
    mockup_missing,
    sample_missing,
)


def _project(**kwargs):
    defaults = {
        "project_name": "Menu cards",
        "project_type": "Standard",
        "status": "Pending Production",
        "departments": ["graphics", "production"],
        "invoice_sent": False,
        "sample_required": False,
        "sample_approval_status": "pending",
        "created_by": "admin-1",
    }
    defaults.update(kwargs)
    return Project(**defaults)


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 1: Workflow tables
# ═══════════════════════════════════════════════════════════════════════════

class TestWorkflowTables:

    def test_quote_and_non_quote_sets_disjoint(self):
        assert not QUOTE_ONLY_STATUSES & NON_QUOTE_ONLY_STATUSES

    @pytest.mark.parametrize("status,project_type,expected", [
        ("Pending Production", "Standard", True),
        ("Pending Production", "Quote", False),
        ("Pending Quote Request", "Quote", True),
        ("Pending Quote Request", "Corporate Job", False),
        ("Completed", "Quote", True),
        ("Not A Status", "Standard", False),
    ])
    def test_status_validity_by_type(self, status, project_type, expected):
        assert is_status_valid_for_type(status, project_type) is expected

    @pytest.mark.parametrize("requested,project_type,expected", [
        ("Mockup Completed", "Standard", "Pending Proof Reading"),
        ("Departmental Engagement Completed", "Standard", "Pending Mockup"),
        ("Departmental Engagement Completed", "Quote", "Pending Quote Request"),
        ("Response Sent", "Quote", "Pending Feedback"),
        ("Finished", "Standard", "Finished"),
    ])
    def test_auto_advance(self, requested, project_type, expected):
        assert resolve_auto_advance(ProjectStatus(requested), project_type).value == expected

    def test_intake_and_revision_start(self):
        assert intake_status("Standard") == ProjectStatus.ORDER_CONFIRMED
        assert intake_status("Quote") == ProjectStatus.PENDING_QUOTE_REQUEST
        assert initial_revision_status("Emergency") == ProjectStatus.PENDING_DEPARTMENTAL_ENGAGEMENT

    def test_billing_guarded_targets(self):
        assert BILLING_GUARDED_STATUSES == {
            ProjectStatus.PENDING_PRODUCTION, ProjectStatus.PENDING_DELIVERY,
        }

    @pytest.mark.parametrize("label,expected", [
        ("Front Desk", Department.FRONT_DESK),
        ("  front   desk ", Department.FRONT_DESK),
        ("Graphics/Design", Department.GRAPHICS),
        ("STORES", Department.STORES),
        ("admin", Department.ADMINISTRATION),
        ("catering", None),
        ("", None),
    ])
    def test_department_aliases(self, label, expected):
        assert canonical_department(label) == expected

    def test_canonical_departments_drops_unknown(self):
        assert canonical_departments(["design", "graphics", "unknown", None]) == {Department.GRAPHICS}


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 2: Gate evaluators
# ═══════════════════════════════════════════════════════════════════════════

class TestGateEvaluators:

    def test_billing_pending_production(self):
        project = _project()
        assert [m.key for m in billing_missing(project, "Pending Production")] == [
            "invoice", "payment_verification_any",
        ]
        project.invoice_sent = True
        project.payment_verifications.append(PaymentVerification(payment_type="po", verified_by="a"))
        assert billing_missing(project, "Pending Production") == []

    def test_billing_delivery_ignores_part_payment(self):
        project = _project()
        project.payment_verifications.append(PaymentVerification(payment_type="part_payment", verified_by="a"))
        assert [m.key for m in billing_missing(project, "Pending Delivery/Pickup")] == [
            "full_payment_or_authorized",
        ]

    def test_billing_unguarded_target(self):
        assert billing_missing(_project(), "Pending Photography") == []

    def test_billing_skipped_for_quotes(self):
        assert billing_missing(_project(project_type="Quote"), "Pending Production") == []

    def test_mockup_gate_uses_latest_version(self):
        project = _project()
        assert [m.key for m in mockup_missing(project)] == ["mockup_version"]

        project.mockup_versions.append(MockupVersion(
            version=1, file_url="v1", uploaded_by="g", approval_status="approved",
        ))
        assert mockup_missing(project) == []

        project.mockup_versions.append(MockupVersion(
            version=2, file_url="v2", uploaded_by="g", approval_status="pending",
        ))
        assert [m.key for m in mockup_missing(project)] == ["mockup_client_approval"]

    def test_mockup_rejection_reason_in_label(self):
        project = _project()
        project.mockup_versions.append(MockupVersion(
            version=1, file_url="v1", uploaded_by="g",
            approval_status="rejected", rejection_reason="Logo too small",
        ))
        missing = mockup_missing(project)
        assert missing[0].key == "mockup_client_rejected"
        assert missing[0].label.endswith("Logo too small")

    def test_sample_gate(self):
        assert sample_missing(_project()) == []
        assert [m.key for m in sample_missing(_project(sample_required=True))] == ["sample_approval"]
        assert sample_missing(_project(sample_required=True, sample_approval_status="approved")) == []

    def test_acknowledgement_gate_canonicalizes(self):
        project = _project(departments=["graphics", "production"])
        project.acknowledgements.append(ProjectAcknowledgement(department="Graphics/Design", user_id="g"))
        assert [m.key for m in acknowledgement_missing(project)] == ["acknowledgement:production"]


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 3: Gate ordering
# ═══════════════════════════════════════════════════════════════════════════

class TestGateOrdering:

    def test_specific_gate_reported_before_billing(self):
        project = _project(status="Pending Mockup")
        block = first_gate_block(project, "Mockup Completed")
        assert block.gate == Gate.MOCKUP
        assert block.target_status == "Mockup Completed"

    def test_billing_checked_on_resolved_target(self):
        project = _project(status="Pending Proof Reading")
        block = first_gate_block(project, "Proof Reading Completed")
        assert block.gate == Gate.BILLING
        assert block.target_status == "Pending Production"

    def test_skip_billing(self):
        project = _project(status="Pending Proof Reading")
        assert first_gate_block(project, "Proof Reading Completed", skip_billing=True) is None

    def test_preflight_collects_all_gates(self):
        project = _project(status="Pending Departmental Engagement")
        keys = [m.key for m in evaluate_gates(project, "Departmental Engagement Completed")]
        assert keys == ["acknowledgement:graphics", "acknowledgement:production"]

    def test_block_dict_shape(self):
        block = first_gate_block(_project(status="Pending Proof Reading"), "Proof Reading Completed")
        body = block.to_dict()
        assert body["code"] == "BILLING_PREREQUISITES_MISSING"
        assert body["missing"] == ["invoice", "payment_verification_any"]
        assert len(body["missingLabels"]) == 2
        assert body["message"].startswith("Billing prerequisites missing")
