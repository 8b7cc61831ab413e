"""Approval Engine - selection, rules, approvals and the ledger"""
from .rule_evaluator import RuleEvaluator
from .configuration_selector import ConfigurationSelector
from .approval_state_machine import ApprovalStateMachine, StageAdvancer
from .escalation_policy import EscalationTargetPolicy, SameApproverPolicy, ConfiguredEscalationPolicy
from .workflow_ledger import WorkflowLedger

__all__ = [
    "RuleEvaluator",
    "ConfigurationSelector",
    "ApprovalStateMachine",
    "StageAdvancer",
    "EscalationTargetPolicy",
    "SameApproverPolicy",
    "ConfiguredEscalationPolicy",
    "WorkflowLedger",
]
