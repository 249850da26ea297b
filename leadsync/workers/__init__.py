"""
Workers Package
Background worker and queue handlers for the lead sync pipeline
"""
from leadsync.workers.handlers import LeadSyncJobHandlers
from leadsync.workers.lead_sync_worker import LeadSyncWorker

__all__ = [
    "LeadSyncJobHandlers",
    "LeadSyncWorker"
]
