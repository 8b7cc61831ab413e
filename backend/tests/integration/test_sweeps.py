"""Integration tests for the time-driven sweeps"""
from datetime import timedelta

import pytest

from approvalflow.config.settings import Settings
from approvalflow.domain.enums import ApprovalStatus, EscalationStatus, RequestStatus
from approvalflow.domain.models import EscalationLevel, EscalationSettings
from approvalflow.engine.approval_state_machine import ApprovalStateMachine
from approvalflow.engine.escalation_policy import ConfiguredEscalationPolicy, SameApproverPolicy
from approvalflow.repositories.request_repo import RequestRepository
from approvalflow.scheduler.sweeps import ApprovalSweeper

TENANT = "tenant-a"


@pytest.fixture
def machine(db, clock):
    return ApprovalStateMachine(db, clock)


@pytest.fixture
def sweeper(db, clock, machine):
    return ApprovalSweeper(
        db, clock,
        escalation_policy=ConfiguredEscalationPolicy(fallback_user_id="manager"),
        state_machine=machine,
        config=Settings()
    )


def count_notifications(db, notification_type, **query):
    return db["notifications"].count_documents(dict(query, notification_type=notification_type))


class TestAutoEscalation:

    def test_escalates_once_after_threshold(self, db, clock, machine, sweeper, make_request):
        request = make_request()
        approval = machine.create_approval(TENANT, request.request_id, "bob")

        clock.advance(hours=47)
        assert not sweeper.run_auto_escalation(TENANT)

        clock.advance(hours=2)
        assert sweeper.run_auto_escalation(TENANT)

        clock.advance(hours=1)
        assert not sweeper.run_auto_escalation(TENANT)

        escalations = list(db["approval_escalations"].find({"approval_id": approval.approval_id}))
        assert len(escalations) == 1
        assert escalations[0]["status"] == EscalationStatus.PENDING.value
        assert escalations[0]["escalated_to_user_id"] == "manager"
        assert escalations[0]["escalated_by_user_id"] == "system"
        assert escalations[0]["reason"] == "Approval pending for more than 48 hours"
        assert machine.get_approval(approval.approval_id, TENANT).status == ApprovalStatus.ESCALATED

    def test_requests_without_due_date_are_skipped(self, clock, machine, sweeper, make_request):
        request = make_request(due_date=None)
        machine.create_approval(TENANT, request.request_id, "bob")

        clock.advance(hours=60)

        assert not sweeper.run_auto_escalation(TENANT)

    def test_same_approver_policy_never_escalates(self, db, clock, machine, make_request):
        sweeper = ApprovalSweeper(db, clock, escalation_policy=SameApproverPolicy(), state_machine=machine)
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        clock.advance(hours=60)

        assert not sweeper.run_auto_escalation(TENANT)
        assert db["approval_escalations"].count_documents({}) == 0

    def test_configuration_threshold_and_target(self, db, clock, machine, sweeper, make_configuration, make_request):
        configuration = make_configuration(escalation_settings=EscalationSettings(
            escalation_time_hours=4,
            escalation_levels=[EscalationLevel(level=1, escalation_users=["bob", "director"])],
            escalation_message="Purchase approvals must be decided within 4 hours"
        ))
        request = make_request(configuration_id=configuration.configuration_id)
        machine.create_approval(TENANT, request.request_id, "bob")

        clock.advance(hours=5)
        assert sweeper.run_auto_escalation(TENANT)

        [escalation] = machine.get_pending_escalations(TENANT)
        assert escalation.escalated_to_user_id == "director"
        assert escalation.reason == "Purchase approvals must be decided within 4 hours"

    def test_disabled_escalation(self, clock, machine, sweeper, make_configuration, make_request):
        configuration = make_configuration(escalation_settings=EscalationSettings(enable_escalation=False))
        request = make_request(configuration_id=configuration.configuration_id)
        machine.create_approval(TENANT, request.request_id, "bob")

        clock.advance(hours=60)

        assert not sweeper.run_auto_escalation(TENANT)

    def test_terminal_requests_are_skipped(self, db, clock, machine, sweeper, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        RequestRepository(db).update_request(request.request_id, TENANT, {"status": RequestStatus.CANCELLED})

        clock.advance(hours=60)

        assert not sweeper.run_auto_escalation(TENANT)

    def test_skipped_rows_do_not_starve_newer_approvals(self, db, clock, machine, make_request):
        sweeper = ApprovalSweeper(
            db, clock,
            escalation_policy=ConfiguredEscalationPolicy(fallback_user_id="manager"),
            state_machine=machine,
            config=Settings(sweep_batch_size=2)
        )
        for _ in range(2):
            undated = make_request(due_date=None)
            machine.create_approval(TENANT, undated.request_id, "bob")
        # Same created_at as the skipped rows, so the page boundary falls on a tie
        dated = make_request()
        approval = machine.create_approval(TENANT, dated.request_id, "carol")

        clock.advance(hours=50)

        assert sweeper.run_auto_escalation(TENANT)
        assert machine.get_approval(approval.approval_id, TENANT).status == ApprovalStatus.ESCALATED
        assert db["approval_escalations"].count_documents({}) == 1

        clock.advance(hours=50)
        assert not sweeper.run_auto_escalation(TENANT)

    def test_escalations_per_run_are_bounded_by_batch_size(self, db, clock, machine, make_request):
        sweeper = ApprovalSweeper(
            db, clock,
            escalation_policy=ConfiguredEscalationPolicy(fallback_user_id="manager"),
            state_machine=machine,
            config=Settings(sweep_batch_size=2)
        )
        for _ in range(3):
            request = make_request()
            machine.create_approval(TENANT, request.request_id, "bob")
            clock.advance(minutes=1)

        clock.advance(hours=50)

        assert sweeper.run_auto_escalation(TENANT)
        assert db["approval_escalations"].count_documents({}) == 2
        assert sweeper.run_auto_escalation(TENANT)
        assert db["approval_escalations"].count_documents({}) == 3


class TestReminders:

    def test_reminder_suppression_window(self, db, clock, machine, sweeper, make_request):
        first = make_request()
        second = make_request()
        machine.create_approval(TENANT, first.request_id, "bob")
        machine.create_approval(TENANT, second.request_id, "bob")

        clock.advance(hours=25)
        assert sweeper.send_reminders(TENANT)
        assert count_notifications(db, "reminder", user_id="bob") == 1

        clock.advance(hours=5)
        assert not sweeper.send_reminders(TENANT)

        clock.advance(hours=8)
        assert sweeper.send_reminders(TENANT)
        assert count_notifications(db, "reminder", user_id="bob") == 2

        reminder = db["notifications"].find_one({"notification_type": "reminder"})
        assert len(reminder["data"]["approval_ids"]) == 2

    def test_fresh_approvals_get_no_reminder(self, clock, machine, sweeper, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")

        clock.advance(hours=23)

        assert not sweeper.send_reminders(TENANT)

    def test_requests_without_due_date_still_remind(self, clock, machine, sweeper, make_request):
        request = make_request(due_date=None)
        machine.create_approval(TENANT, request.request_id, "bob")

        clock.advance(hours=25)

        assert sweeper.send_reminders(TENANT)

    def test_reminders_reach_past_closed_requests(self, db, clock, machine, make_request):
        sweeper = ApprovalSweeper(db, clock, state_machine=machine, config=Settings(sweep_batch_size=2))
        for _ in range(2):
            closed = make_request()
            machine.create_approval(TENANT, closed.request_id, "bob")
            RequestRepository(db).update_request(closed.request_id, TENANT, {"status": RequestStatus.CANCELLED})
            clock.advance(minutes=1)
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "carol")

        clock.advance(hours=25)

        assert sweeper.send_reminders(TENANT)
        assert count_notifications(db, "reminder", user_id="carol") == 1
        assert count_notifications(db, "reminder", user_id="bob") == 0


class TestOverdue:

    def test_marks_overdue_and_notifies_each_requester_once(self, db, clock, sweeper, make_request):
        due = clock.now() + timedelta(hours=1)
        make_request(requester_id="alice", due_date=due)
        make_request(requester_id="alice", due_date=due, status=RequestStatus.IN_PROGRESS)
        make_request(requester_id="bob", due_date=due, tenant_id="tenant-b")
        later = make_request(requester_id="alice", due_date=due + timedelta(days=10))
        done = make_request(requester_id="alice", due_date=due, status=RequestStatus.COMPLETED)

        clock.advance(hours=2)
        assert sweeper.update_overdue_requests_status()

        repo = RequestRepository(db)
        assert repo.count_requests(TENANT, [RequestStatus.OVERDUE]) == 2
        assert repo.count_requests("tenant-b", [RequestStatus.OVERDUE]) == 1
        assert repo.get_request(later.request_id, TENANT).status == RequestStatus.PENDING
        assert repo.get_request(done.request_id, TENANT).status == RequestStatus.COMPLETED

        assert count_notifications(db, "overdue", user_id="alice") == 1
        assert count_notifications(db, "overdue", user_id="bob") == 1
        alice = db["notifications"].find_one({"notification_type": "overdue", "user_id": "alice"})
        assert len(alice["data"]["request_ids"]) == 2

        assert not sweeper.update_overdue_requests_status()

    def test_tenant_scope(self, clock, sweeper, make_request):
        make_request(tenant_id="tenant-b", due_date=clock.now())
        clock.advance(hours=1)

        assert not sweeper.update_overdue_requests_status(TENANT)
        assert sweeper.update_overdue_requests_status("tenant-b")


class TestMonitoringAndCleanup:

    def test_alert_on_overdue_requests(self, db, clock, machine, make_request):
        config = Settings(monitoring_alert_recipients="ops, admin")
        sweeper = ApprovalSweeper(db, clock, state_machine=machine, config=config)
        make_request(due_date=clock.now() + timedelta(hours=1))

        assert not sweeper.run_system_monitoring(TENANT)

        clock.advance(hours=2)
        sweeper.update_overdue_requests_status()
        assert sweeper.run_system_monitoring(TENANT)
        assert count_notifications(db, "alert") == 2

    def test_alert_on_pending_threshold(self, db, clock, machine, make_request):
        config = Settings(monitoring_pending_threshold=1, monitoring_alert_recipients="ops")
        sweeper = ApprovalSweeper(db, clock, state_machine=machine, config=config)
        make_request()
        make_request()

        assert sweeper.run_system_monitoring(TENANT)
        alert = db["notifications"].find_one({"notification_type": "alert"})
        assert alert["data"]["open_requests"] == 2

    def test_cleanup_removes_old_finished_records(self, db, clock, machine, sweeper, make_request):
        request = make_request()
        machine.create_approval(TENANT, request.request_id, "bob")
        machine.approve(TENANT, request.request_id, "bob")
        db["notifications"].update_many({}, {"$set": {"is_read": True}})

        assert not sweeper.run_data_cleanup(TENANT)

        clock.advance(days=31)
        assert sweeper.run_data_cleanup(TENANT)

        assert db["notifications"].count_documents({}) == 0
        assert db["workflow_instances"].count_documents({}) == 0

    def test_list_tenant_ids(self, sweeper, make_request):
        make_request(tenant_id="tenant-b")
        make_request()

        assert sweeper.list_tenant_ids() == ["tenant-a", "tenant-b"]
