from .reconciliation import ReconciliationJob, reconciliation_job

__all__ = ["ReconciliationJob", "reconciliation_job"]
