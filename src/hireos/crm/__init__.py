"""Candidate/CRM reconciliation.

Keeps internal candidates consistent with contacts held in external
stores (Airtable, Google Sheets, GoHighLevel):
- FieldMapper: HireOS field <-> provider field names per integration
- Matcher: Email-then-name contact -> candidate matching
- ChangeDetector: Minimal partial updates for matched pairs
- ReconciliationPlanner: Preview/execute decision tree producing SyncResult
- ReconciliationService: Provider-id entry points with run timeout
"""

from src.hireos.crm.change_detection import ChangeDetector
from src.hireos.crm.field_mapping import FieldMapper, field_name, field_value
from src.hireos.crm.matching import Matcher, normalize_name
from src.hireos.crm.planner import ReconciliationPlanner
from src.hireos.crm.schemas import (
    ExternalContact,
    JobAssignment,
    SyncAction,
    SyncDetail,
    SyncOptions,
    SyncResult,
)
from src.hireos.crm.service import (
    ReconciliationService,
    ReconciliationTimeoutError,
    rotated_tokens,
)
from src.hireos.crm.store import CandidateStore, RepositoryCandidateStore

__all__ = [
    "CandidateStore",
    "ChangeDetector",
    "ExternalContact",
    "FieldMapper",
    "JobAssignment",
    "Matcher",
    "ReconciliationPlanner",
    "ReconciliationService",
    "ReconciliationTimeoutError",
    "RepositoryCandidateStore",
    "SyncAction",
    "SyncDetail",
    "SyncOptions",
    "SyncResult",
    "field_name",
    "field_value",
    "normalize_name",
    "rotated_tokens",
]
