from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class SendWhatsAppRequest(BaseModel):
    to: str = Field(..., min_length=1)
    message: Optional[str] = None
    document_url: Optional[str] = None
    document_filename: Optional[str] = None
    caption: Optional[str] = None
    idempotency_key: Optional[str] = None


class SendWhatsAppResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    log_id: Optional[str] = None
    duplicate: bool = False
    status: Optional[str] = None
    error: Optional[str] = None
    timestamp: Optional[str] = None


class StatementMember(BaseModel):
    id: str
    full_name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    national_id: Optional[str] = None


class StatementSavings(BaseModel):
    current_balance: float = 0
    total_contributions: float = 0
    contribution_count: int = 0
    last_contribution_date: Optional[str] = None
    last_contribution_amount: Optional[float] = None
    arrears: float = 0


class StatementLoans(BaseModel):
    active_loan_balance: float = 0
    total_loans_taken: float = 0
    total_loans_repaid: float = 0
    loans_count: int = 0
    has_active_loan: bool = False


class StatementGroup(BaseModel):
    id: str = ""
    name: str = ""
    role: Optional[str] = None
    joined_at: Optional[str] = None
    contribution_frequency: str = ""
    expected_amount: float = 0


class StatementTransaction(BaseModel):
    id: str
    type: Optional[str] = None
    amount: float = 0
    date: Optional[str] = None
    group_name: Optional[str] = None
    status: Optional[str] = None


class MemberStatement(BaseModel):
    member: StatementMember
    savings: StatementSavings
    loans: StatementLoans
    groups: List[StatementGroup]
    recent_transactions: List[StatementTransaction]
    currency: str = "RWF"
    generated_at: str


class SendStatementRequest(BaseModel):
    send_whatsapp: bool = True
    attach_pdf: bool = True
    phone: Optional[str] = None


class StatementResult(BaseModel):
    statement: MemberStatement
    message: str
    pdf_url: Optional[str] = None
    delivery: Optional[SendWhatsAppResult] = None


class WebhookResult(BaseModel):
    success: bool = True
    message: Optional[str] = None
    processed_messages: int = 0
    processed_statuses: int = 0


class MessageLogEntry(BaseModel):
    id: str
    institution_id: Optional[str] = None
    direction: Optional[str] = None
    phone_number: Optional[str] = None
    message_type: Optional[str] = None
    content: Optional[str] = None
    status: Optional[str] = None
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
