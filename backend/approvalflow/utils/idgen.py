"""ID Generation Utilities"""
import uuid
from datetime import datetime, timezone
from typing import Optional


def generate_id(prefix: Optional[str] = None) -> str:
    """
    Generate a unique ID with optional prefix

    Examples:
        >>> generate_id('REQ')
        'REQ-a1b2c3d4e5f6'
        >>> generate_id()
        'a1b2c3d4e5f6'
    """
    unique_part = uuid.uuid4().hex[:12]

    if prefix:
        return f"{prefix}-{unique_part}"
    return unique_part


def generate_configuration_id() -> str:
    return generate_id("CFG")


def generate_request_id() -> str:
    return generate_id("REQ")


def generate_approval_id() -> str:
    return generate_id("APR")


def generate_escalation_id() -> str:
    return generate_id("ESC")


def generate_instance_id() -> str:
    return generate_id("WFI")


def generate_notification_id() -> str:
    return generate_id("NTF")


def generate_correlation_id() -> str:
    """Generate a correlation ID for request and job tracing"""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    unique_part = uuid.uuid4().hex[:8]
    return f"COR-{timestamp}-{unique_part}"
