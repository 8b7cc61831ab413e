"""Escalation Target Policies - who an overdue approval escalates to"""
from typing import Dict, Optional

from ..domain.models import Approval, Request, WorkflowConfiguration


class EscalationTargetPolicy:
    """
    Decides the escalation target for a stale approval

    Returning None, or the approval's current approver, means "do not
    escalate".
    """

    def resolve_target(
        self,
        approval: Approval,
        request: Request,
        configuration: Optional[WorkflowConfiguration]
    ) -> Optional[str]:
        raise NotImplementedError


class SameApproverPolicy(EscalationTargetPolicy):
    """Never escalates; the target is always the current approver"""

    def resolve_target(self, approval, request, configuration):
        return approval.approver_id


class ConfiguredEscalationPolicy(EscalationTargetPolicy):
    """
    Targets named explicitly by configuration

    Order of lookup:
      1. the first escalation user of the configuration's lowest escalation
         level that is not the current approver
      2. a host-supplied mapping approver_id -> target
      3. a host-supplied fallback user
    """

    def __init__(
        self,
        targets: Optional[Dict[str, str]] = None,
        fallback_user_id: Optional[str] = None
    ):
        self.targets = dict(targets or {})
        self.fallback_user_id = fallback_user_id

    def resolve_target(
        self,
        approval: Approval,
        request: Request,
        configuration: Optional[WorkflowConfiguration]
    ) -> Optional[str]:
        if configuration is not None:
            levels = sorted(configuration.escalation_settings.escalation_levels, key=lambda l: l.level)
            for level in levels:
                for user_id in level.escalation_users:
                    if user_id and user_id != approval.approver_id:
                        return user_id

        mapped = self.targets.get(approval.approver_id)
        if mapped:
            return mapped
        return self.fallback_user_id
