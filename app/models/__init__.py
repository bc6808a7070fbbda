from app.models.audit_trail import AuditTrailEntry
from app.models.business_document import BusinessDocument
from app.models.business_profile import BusinessProfile
from app.models.document_request import DocumentRequest
from app.models.loan_application import LoanApplication
from app.models.loan_application_snapshot import LoanApplicationSnapshot
from app.models.loan_product import LoanProduct
from app.models.loan_product_snapshot import LoanProductSnapshot
from app.models.offer_letter import OfferLetter
from app.models.personal_document import PersonalDocument
from app.models.user import User

__all__ = [
    "AuditTrailEntry",
    "BusinessDocument",
    "BusinessProfile",
    "DocumentRequest",
    "LoanApplication",
    "LoanApplicationSnapshot",
    "LoanProduct",
    "LoanProductSnapshot",
    "OfferLetter",
    "PersonalDocument",
    "User",
]
