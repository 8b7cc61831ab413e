"""Integration tests for the approval state machine against an in-memory store"""
import pytest
from pymongo.errors import DuplicateKeyError

from approvalflow.domain.enums import ApprovalStatus, EscalationStatus, LedgerEvent, RequestStatus
from approvalflow.engine.approval_state_machine import ApprovalStateMachine, StageAdvancer
from approvalflow.repositories.mongo_client import create_indexes
from approvalflow.repositories.request_repo import RequestRepository

TENANT = "tenant-a"


class FixedStages(StageAdvancer):
    """Stage N+1 approvers from a fixed list"""

    def __init__(self, stages):
        self.stages = stages

    def next_stage_approvers(self, request, completed_stage):
        if completed_stage < len(self.stages):
            return self.stages[completed_stage]
        return []


class DuplicateOnInsert:
    """Collection wrapper whose inserts hit the unique index"""

    def __init__(self, collection):
        self.collection = collection

    def insert_one(self, document):
        raise DuplicateKeyError("E11000 duplicate key error")

    def __getattr__(self, name):
        return getattr(self.collection, name)


@pytest.fixture
def machine(db, clock):
    return ApprovalStateMachine(db, clock)


def request_status(db, request_id):
    return RequestRepository(db).get_request(request_id, TENANT).status


def events(machine, request_id):
    instance = machine.ledger.get_instance_for_request(TENANT, request_id)
    return [entry.event for entry in instance.history]


class TestCreateApproval:

    def test_creates_pending_and_moves_request_in_progress(self, db, machine, make_request):
        request = make_request()

        approval = machine.create_approval(TENANT, request.request_id, "bob")

        assert approval.status == ApprovalStatus.PENDING
        assert approval.stage == 1
        assert request_status(db, request.request_id) == RequestStatus.IN_PROGRESS
        assert db["notifications"].count_documents({"user_id": "bob", "notification_type": "approval_pending"}) == 1

    def test_one_pending_per_approver(self, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        assert machine.create_approval(TENANT, request.request_id, "bob") is None
        assert machine.create_approval(TENANT, request.request_id, "carol") is not None

    def test_closed_requests_refuse_approvals(self, machine, make_request):
        cancelled = make_request(status=RequestStatus.CANCELLED)
        rejected = make_request(status=RequestStatus.REJECTED)

        assert machine.create_approval(TENANT, cancelled.request_id, "bob") is None
        assert machine.create_approval(TENANT, rejected.request_id, "bob") is None
        assert machine.create_approval(TENANT, "missing", "bob") is None

    def test_direct_requests_get_a_ledger_instance(self, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        instance = machine.ledger.get_instance_for_request(TENANT, request.request_id)

        assert instance.workflow_name == "direct"
        assert LedgerEvent.APPROVAL_CREATED.value in events(machine, request.request_id)


class TestDecisions:

    def test_single_approval_completes_request(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        assert machine.approve(TENANT, request.request_id, "bob", "ok")

        assert request_status(db, request.request_id) == RequestStatus.COMPLETED
        assert LedgerEvent.FINALIZED.value in events(machine, request.request_id)

    def test_second_decision_returns_false(self, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.approve(TENANT, request.request_id, "bob")

        assert not machine.approve(TENANT, request.request_id, "bob")
        assert not machine.reject(TENANT, request.request_id, "bob", "changed my mind")

    def test_stage_waits_for_every_approver(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.create_approval(TENANT, request.request_id, "carol")

        machine.approve(TENANT, request.request_id, "bob")
        assert request_status(db, request.request_id) == RequestStatus.IN_PROGRESS

        machine.approve(TENANT, request.request_id, "carol")
        assert request_status(db, request.request_id) == RequestStatus.COMPLETED

    def test_reject_is_immediate(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.create_approval(TENANT, request.request_id, "carol")

        assert machine.reject(TENANT, request.request_id, "bob", "Over budget")

        stored = RequestRepository(db).get_request(request.request_id, TENANT)
        assert stored.status == RequestStatus.REJECTED
        assert stored.rejection_reason == "Over budget"
        assert stored.completed_at is not None

    def test_late_approval_does_not_reopen_rejected_request(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.create_approval(TENANT, request.request_id, "carol")
        machine.reject(TENANT, request.request_id, "bob", "No")

        machine.approve(TENANT, request.request_id, "carol")

        assert request_status(db, request.request_id) == RequestStatus.REJECTED

    def test_cancelled_request_blocks_decisions(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        RequestRepository(db).update_request(request.request_id, TENANT, {"status": RequestStatus.CANCELLED})

        assert not machine.approve(TENANT, request.request_id, "bob")

    def test_overdue_request_can_still_finalize(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        RequestRepository(db).update_request(request.request_id, TENANT, {"status": RequestStatus.OVERDUE})

        machine.approve(TENANT, request.request_id, "bob")

        assert request_status(db, request.request_id) == RequestStatus.COMPLETED

    def test_reject_keeps_comments_and_reason_apart(self, db, machine, make_request):
        request = make_request()
        approval = machine.create_approval(TENANT, request.request_id, "bob")

        machine.reject(TENANT, request.request_id, "bob", "Over budget")

        assert machine.get_approval(approval.approval_id, TENANT).comments is None
        assert RequestRepository(db).get_request(request.request_id, TENANT).rejection_reason == "Over budget"

    def test_reject_does_not_reopen_a_finished_request(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        RequestRepository(db).update_request(request.request_id, TENANT, {"status": RequestStatus.APPROVED})

        assert machine.reject(TENANT, request.request_id, "bob", "No")

        stored = RequestRepository(db).get_request(request.request_id, TENANT)
        assert stored.status == RequestStatus.APPROVED
        assert stored.rejection_reason is None


class TestStages:

    def test_stages_run_in_order(self, db, clock, make_request):
        machine = ApprovalStateMachine(db, clock, stage_advancer=FixedStages([["bob"], ["carol", "dave"], ["erin"]]))
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        machine.approve(TENANT, request.request_id, "bob")
        stage_two = [a for a in machine.get_request_approvals(request.request_id, TENANT) if a.stage == 2]
        assert sorted(a.approver_id for a in stage_two) == ["carol", "dave"]
        assert request_status(db, request.request_id) == RequestStatus.IN_PROGRESS

        machine.approve(TENANT, request.request_id, "carol")
        machine.approve(TENANT, request.request_id, "dave")
        assert request_status(db, request.request_id) == RequestStatus.IN_PROGRESS

        machine.approve(TENANT, request.request_id, "erin")
        assert request_status(db, request.request_id) == RequestStatus.COMPLETED
        assert events(machine, request.request_id).count(LedgerEvent.STAGE_ADVANCED.value) == 2

    def test_rejection_stops_stage_advance(self, db, clock, make_request):
        machine = ApprovalStateMachine(db, clock, stage_advancer=FixedStages([["bob"], ["carol"]]))
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        machine.reject(TENANT, request.request_id, "bob", "No")

        assert [a.approver_id for a in machine.get_request_approvals(request.request_id, TENANT)] == ["bob"]

    def test_escalation_residue_finalizes_instead_of_advancing(self, db, clock, make_request):
        machine = ApprovalStateMachine(db, clock, stage_advancer=FixedStages([["bob", "carol"], ["erin"]]))
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.create_approval(TENANT, request.request_id, "carol")

        machine.approve(TENANT, request.request_id, "bob")
        machine.escalate(TENANT, request.request_id, "carol", "Unsure", escalated_to="manager")
        [escalation] = machine.get_pending_escalations(TENANT)
        machine.resolve_escalation(escalation.escalation_id, TENANT, "admin")

        stages = sorted({a.stage for a in machine.get_request_approvals(request.request_id, TENANT)})
        assert stages == [1]
        assert request_status(db, request.request_id) == RequestStatus.COMPLETED
        assert LedgerEvent.STAGE_ADVANCED.value not in events(machine, request.request_id)

    def test_reassigned_escalation_counts_as_its_replacement(self, db, clock, make_request):
        machine = ApprovalStateMachine(db, clock, stage_advancer=FixedStages([["bob", "carol"], ["erin"]]))
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.create_approval(TENANT, request.request_id, "carol")
        machine.approve(TENANT, request.request_id, "bob")
        machine.escalate(TENANT, request.request_id, "carol", "On leave", escalated_to="manager")
        [escalation] = machine.get_pending_escalations(TENANT)
        machine.resolve_escalation(escalation.escalation_id, TENANT, "admin", reassign=True)

        machine.approve(TENANT, request.request_id, "manager")

        stage_two = [a.approver_id for a in machine.get_request_approvals(request.request_id, TENANT) if a.stage == 2]
        assert stage_two == ["erin"]
        assert request_status(db, request.request_id) == RequestStatus.IN_PROGRESS
        stored = machine.escalation_repo.get_escalation(escalation.escalation_id, TENANT)
        assert stored.reassigned_approval_id is not None


class TestEscalation:

    def test_escalate_and_reassign(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        assert machine.escalate(TENANT, request.request_id, "bob", "On leave", escalated_to="manager")

        [escalation] = machine.get_pending_escalations(TENANT)
        assert escalation.escalated_to_user_id == "manager"
        assert machine.get_approval(escalation.approval_id, TENANT).status == ApprovalStatus.ESCALATED
        assert db["notifications"].count_documents({"user_id": "manager", "notification_type": "escalated"}) == 1

        assert machine.resolve_escalation(escalation.escalation_id, TENANT, "admin", reassign=True)

        assert machine.get_pending_escalations(TENANT) == []
        items, total = machine.get_pending_approvals("manager", TENANT)
        assert total == 1
        assert items[0].stage == 1

        machine.approve(TENANT, request.request_id, "manager")
        assert request_status(db, request.request_id) == RequestStatus.COMPLETED

    def test_resolve_without_reassign_finalizes(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.escalate(TENANT, request.request_id, "bob", "Unsure", escalated_to="manager")
        [escalation] = machine.get_pending_escalations(TENANT)

        assert machine.resolve_escalation(escalation.escalation_id, TENANT, "admin")

        assert request_status(db, request.request_id) == RequestStatus.COMPLETED
        assert not machine.resolve_escalation(escalation.escalation_id, TENANT, "admin")

    def test_escalated_approval_cannot_be_decided(self, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.escalate(TENANT, request.request_id, "bob", "Unsure")

        assert not machine.approve(TENANT, request.request_id, "bob")
        assert not machine.escalate(TENANT, request.request_id, "bob", "Again")

    def test_escalation_stats(self, clock, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.escalate(TENANT, request.request_id, "bob", "Unsure", escalated_to="manager")
        [escalation] = machine.get_pending_escalations(TENANT)
        clock.advance(hours=3)
        machine.resolve_escalation(escalation.escalation_id, TENANT, "admin")

        stats = machine.get_escalation_stats(TENANT)

        assert stats.total == 1
        assert stats.resolved == 1
        assert stats.pending == 0
        assert stats.average_resolution_hours == 3.0
        assert machine.escalation_repo.get_escalation(escalation.escalation_id, TENANT).status == EscalationStatus.RESOLVED


class TestQueries:

    def test_pending_approvals_are_paged(self, clock, machine, make_request):
        for _ in range(3):
            request = make_request()
            machine.create_approval(TENANT, request.request_id, "bob")
            clock.advance(minutes=1)

        items, total = machine.get_pending_approvals("bob", TENANT, page=2, page_size=2)

        assert total == 3
        assert len(items) == 1

    def test_approval_stats(self, clock, machine, make_request):
        first = make_request()
        second = make_request()
        machine.create_approval(TENANT, first.request_id, "bob")
        machine.create_approval(TENANT, second.request_id, "bob")
        clock.advance(hours=2)
        machine.approve(TENANT, first.request_id, "bob")
        machine.reject(TENANT, second.request_id, "bob", "No")

        stats = machine.get_approval_stats(TENANT, approver_id="bob")

        assert stats.total == 2
        assert stats.approved == 1
        assert stats.rejected == 1
        assert stats.approval_rate == 50.0
        assert stats.average_processing_hours == 2.0


class TestConcurrency:

    def test_stale_version_does_not_decide(self, machine, make_request):
        request = make_request()
        approval = machine.create_approval(TENANT, request.request_id, "bob")

        decided = machine.approval_repo.decide(
            approval.approval_id, TENANT, approval.version + 1, {"status": ApprovalStatus.APPROVED}
        )

        assert decided is None
        assert machine.get_approval(approval.approval_id, TENANT).status == ApprovalStatus.PENDING

    def test_decision_lost_between_lookup_and_swap(self, db, machine, make_request, monkeypatch):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        snapshot = machine.approval_repo.find_pending(request.request_id, "bob", TENANT)
        assert machine.approve(TENANT, request.request_id, "bob", "ok")

        # The rejecting caller read the row before the approval landed
        monkeypatch.setattr(machine.approval_repo, "find_pending", lambda *args: snapshot)

        assert not machine.reject(TENANT, request.request_id, "bob", "Too late")
        approval = machine.get_approval(snapshot.approval_id, TENANT)
        assert approval.status == ApprovalStatus.APPROVED
        assert approval.comments == "ok"
        assert request_status(db, request.request_id) == RequestStatus.COMPLETED

    def test_escalation_losing_the_swap_is_rolled_back(self, db, machine, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        snapshot = machine.approval_repo.find_pending(request.request_id, "bob", TENANT)
        machine.approve(TENANT, request.request_id, "bob")

        escalation = machine.escalate_pending_approval(
            snapshot, request, "Pending too long", escalated_by="system", escalated_to="manager"
        )

        assert escalation is None
        assert db["approval_escalations"].count_documents({}) == 0
        assert machine.get_approval(snapshot.approval_id, TENANT).status == ApprovalStatus.APPROVED
        assert db["notifications"].count_documents({"user_id": "manager"}) == 0

    def test_store_refuses_a_second_pending_approval(self, db, machine, make_request, monkeypatch):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        # Both creators passed the lookup; the unique index refuses the second insert
        monkeypatch.setattr(machine.approval_repo, "find_pending", lambda *args: None)
        monkeypatch.setattr(
            machine.approval_repo, "_approvals", DuplicateOnInsert(machine.approval_repo._approvals)
        )

        assert machine.create_approval(TENANT, request.request_id, "bob") is None
        assert db["approvals"].count_documents({"approver_id": "bob"}) == 1
        assert db["notifications"].count_documents({"user_id": "bob", "notification_type": "approval_pending"}) == 1
        assert events(machine, request.request_id).count(LedgerEvent.APPROVAL_CREATED.value) == 1

    def test_pending_approval_index_is_declared(self, db):
        create_indexes(db)

        assert "one_pending_approval_per_approver" in db["approvals"].index_information()
