"""Tests for configuration selection"""
from datetime import timedelta

from approvalflow.domain.enums import ConfigurationStatus
from approvalflow.domain.models import Condition
from approvalflow.engine.configuration_selector import ConfigurationSelector
from approvalflow.repositories.configuration_repo import ConfigurationRepository

TENANT = "tenant-a"


def selector_for(db):
    return ConfigurationSelector(ConfigurationRepository(db))


class TestSelectConfiguration:

    def test_highest_priority_wins(self, db, make_configuration):
        make_configuration(workflow_name="A", priority=2)
        chosen = make_configuration(workflow_name="B", priority=5)

        selected = selector_for(db).select_configuration(TENANT, "purchase", {"amount": 10})

        assert selected.configuration_id == chosen.configuration_id

    def test_tie_goes_to_latest_update(self, db, clock, make_configuration):
        make_configuration(workflow_name="Old", priority=3)
        clock.advance(hours=1)
        newer = make_configuration(workflow_name="New", priority=3, updated_at=clock.now())

        selected = selector_for(db).select_configuration(TENANT, "purchase", {})

        assert selected.configuration_id == newer.configuration_id

    def test_start_conditions_filter(self, db, make_configuration):
        make_configuration(
            workflow_name="Big purchases",
            priority=9,
            start_conditions=[Condition(field="amount", operator="greaterThan", value=10000)]
        )
        fallback = make_configuration(workflow_name="Everything", priority=1)

        selected = selector_for(db).select_configuration(TENANT, "purchase", {"amount": 50})

        assert selected.configuration_id == fallback.configuration_id

    def test_inactive_draft_and_deleted_are_ignored(self, db, make_configuration):
        make_configuration(is_active=False)
        make_configuration(status=ConfigurationStatus.DRAFT)
        make_configuration(is_deleted=True)
        make_configuration(tenant_id="tenant-b")
        make_configuration(request_type_id="travel")

        assert selector_for(db).select_configuration(TENANT, "purchase", {}) is None

    def test_list_compatible_is_ordered(self, db, clock, make_configuration):
        low = make_configuration(workflow_name="Low", priority=1, request_type_id="travel")
        high = make_configuration(
            workflow_name="High", priority=4, updated_at=clock.now() + timedelta(minutes=5)
        )

        compatible = selector_for(db).list_compatible_configurations(TENANT, {})

        assert [c.configuration_id for c in compatible] == [high.configuration_id, low.configuration_id]
