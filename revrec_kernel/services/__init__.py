"""Kernel services (write side): audit trail and sequence allocation."""

from revrec_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from revrec_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "SequenceService",
]
