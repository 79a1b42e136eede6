from backoffice.models.agency import Agency, Client
from backoffice.models.agency_counter import AgencyCounter
from backoffice.models.audit_log import AuditLog
from backoffice.models.base import Base
from backoffice.models.booking import Booking, Service
from backoffice.models.credit_note import CreditNote, CreditNoteItem
from backoffice.models.invoice import Invoice, InvoiceItem
from backoffice.models.job_lock import JobLock

__all__ = [
    "Agency",
    "AgencyCounter",
    "AuditLog",
    "Base",
    "Booking",
    "Client",
    "CreditNote",
    "CreditNoteItem",
    "Invoice",
    "InvoiceItem",
    "JobLock",
    "Service",
]
