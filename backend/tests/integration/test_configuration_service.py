"""Integration tests for configuration authoring and lifecycle"""
import pytest

from approvalflow.domain.enums import ConfigurationStatus
from approvalflow.domain.errors import (
    ConcurrencyError, ConfigurationNotFoundError, InvalidStateError, RuleValidationError
)
from approvalflow.domain.models import Condition, EvaluationRule
from approvalflow.services.configuration_service import ConfigurationService

TENANT = "tenant-a"


@pytest.fixture
def service(db, clock):
    return ConfigurationService(db, clock)


def create(service, actor, **kwargs):
    return service.create_configuration("Purchase approval", "purchase", actor, **kwargs)


class TestCreate:

    def test_created_as_inactive_draft(self, service, actor):
        configuration = create(service, actor, priority=4, approval_stages=[["bob"]])

        assert configuration.status == ConfigurationStatus.DRAFT
        assert not configuration.is_active
        assert configuration.tenant_id == TENANT
        assert configuration.created_by == "admin"
        assert service.get_configuration(configuration.configuration_id, TENANT).priority == 4

    def test_rejects_malformed_rules(self, service, actor):
        rules = [
            EvaluationRule(field="amount", operator="between", value=[1], action="Escalate"),
            EvaluationRule(field="dept", operator="like", value="x", action="Escalate"),
        ]
        with pytest.raises(RuleValidationError) as exc_info:
            create(service, actor, evaluation_rules=rules)

        assert len(exc_info.value.details["errors"]) == 2
        assert "between" in exc_info.value.details["supported_operators"]

    def test_other_tenant_cannot_read(self, service, actor):
        configuration = create(service, actor)

        with pytest.raises(ConfigurationNotFoundError):
            service.get_configuration(configuration.configuration_id, "tenant-b")


class TestUpdate:

    def test_update_and_revision_check(self, service, actor):
        configuration = create(service, actor)

        updated = service.update_configuration(
            configuration.configuration_id,
            {"description": "Chairs and desks", "revision": 99, "tenant_id": "tenant-b"},
            actor,
            expected_revision=1
        )

        assert updated.description == "Chairs and desks"
        assert updated.revision == 2
        assert updated.tenant_id == TENANT
        with pytest.raises(ConcurrencyError):
            service.update_configuration(configuration.configuration_id, {"priority": 3}, actor, expected_revision=1)

    def test_rules_are_validated_and_stored_camel_case(self, db, service, actor):
        configuration = create(service, actor)

        service.update_configuration(
            configuration.configuration_id,
            {"evaluation_rules": [{"field": "amount", "operator": "greaterThan", "value": 10, "action": "Escalate", "isActive": True}]},
            actor
        )

        doc = db["workflow_configurations"].find_one({"configuration_id": configuration.configuration_id})
        assert doc["evaluation_rules"][0]["isActive"] is True
        with pytest.raises(RuleValidationError):
            service.update_configuration(
                configuration.configuration_id,
                {"start_conditions": [{"field": "amount", "operator": "in", "value": 3}]},
                actor
            )

    def test_archived_is_read_only(self, service, actor):
        configuration = create(service, actor)
        service.archive_configuration(configuration.configuration_id, actor)

        with pytest.raises(InvalidStateError):
            service.update_configuration(configuration.configuration_id, {"priority": 3}, actor)
        with pytest.raises(InvalidStateError):
            service.activate_configuration(configuration.configuration_id, actor)


class TestLifecycle:

    def test_activate_makes_selectable(self, service, actor):
        configuration = create(service, actor)
        assert service.select_configuration(TENANT, "purchase", {}) is None

        activated = service.activate_configuration(configuration.configuration_id, actor)

        assert activated.status == ConfigurationStatus.ACTIVE
        assert activated.is_active
        assert service.select_configuration(TENANT, "purchase", {}).configuration_id == configuration.configuration_id

        service.deactivate_configuration(configuration.configuration_id, actor)
        assert service.select_configuration(TENANT, "purchase", {}) is None

    def test_delete_hides_configuration(self, service, actor):
        configuration = create(service, actor)

        assert service.delete_configuration(configuration.configuration_id, actor)

        with pytest.raises(ConfigurationNotFoundError):
            service.get_configuration(configuration.configuration_id, TENANT)
        assert service.list_for_tenant(TENANT) == []

    def test_clone(self, service, actor):
        original = create(service, actor, approval_stages=[["bob"]])
        service.activate_configuration(original.configuration_id, actor)

        clone = service.clone_configuration(original.configuration_id, actor)

        assert clone.configuration_id != original.configuration_id
        assert clone.workflow_name == "Purchase approval - Copy"
        assert clone.status == ConfigurationStatus.DRAFT
        assert not clone.is_active
        assert clone.version == "2.0"
        assert clone.approval_stages == [["bob"]]


class TestEvaluation:

    def test_evaluate_workflow_rules(self, service, actor):
        configuration = create(service, actor, evaluation_rules=[
            EvaluationRule(field="amount", operator="greaterThan", value=100, action="RequireApproval")
        ], default_action="AutoApprove")

        assert service.evaluate_workflow_rules(configuration.configuration_id, TENANT, {"amount": 500}).result_action == "RequireApproval"
        assert service.evaluate_workflow_rules(configuration.configuration_id, TENANT, {"amount": 5}).result_action == "AutoApprove"

        missing = service.evaluate_workflow_rules("nope", TENANT, {})
        assert not missing.is_valid
        assert missing.errors == ["Configuration not found"]

    def test_start_and_completion_conditions(self, service, actor):
        configuration = create(
            service, actor,
            start_conditions=[Condition(field="amount", operator="greaterThan", value=100)],
            completion_conditions=[Condition(field="received", operator="equals", value=True)]
        )
        configuration_id = configuration.configuration_id

        assert service.check_start_conditions(configuration_id, TENANT, {"amount": 101})
        assert not service.check_start_conditions(configuration_id, TENANT, {"amount": 99})
        assert service.check_completion_conditions(configuration_id, TENANT, {"received": True})
        assert not service.check_completion_conditions("nope", TENANT, {"received": True})


class TestQueries:

    def test_statistics(self, service, actor):
        first = create(service, actor)
        second = service.create_configuration("Travel approval", "travel", actor)
        service.activate_configuration(first.configuration_id, actor)
        service.archive_configuration(second.configuration_id, actor)
        create(service, actor)

        stats = service.get_statistics(TENANT)

        assert stats.total == 3
        assert stats.active == 1
        assert stats.draft == 1
        assert stats.archived == 1
        assert stats.by_request_type == {"purchase": 2, "travel": 1}

    def test_search_and_filters(self, service, actor):
        create(service, actor, description="Office furniture")
        service.create_configuration("Travel approval", "travel", actor)

        assert len(service.list_for_tenant(TENANT, search="FURNITURE")) == 1
        assert len(service.list_for_request_type(TENANT, "travel")) == 1
        assert len(service.list_for_tenant(TENANT, status=ConfigurationStatus.DRAFT)) == 2

    def test_compatible_configurations(self, service, actor):
        purchase = create(service, actor, priority=2)
        travel = service.create_configuration("Travel approval", "travel", actor, priority=5)
        service.activate_configuration(purchase.configuration_id, actor)
        service.activate_configuration(travel.configuration_id, actor)

        compatible = service.list_compatible_configurations(TENANT, {})

        assert [c.request_type_id for c in compatible] == ["travel", "purchase"]
