from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Optional, List
from datetime import datetime
from paygate_common.security_config import sanitize_input, validate_password_strength

from paygate.status import TransactionStatus

# --- Payments ---

class ItemDetailRequest(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    price: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)

    @field_validator('id', 'name')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class AddressDetail(BaseModel):
    first_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None

    @field_validator('first_name', 'phone', 'address', 'city', 'postal_code')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CreatePaymentRequest(BaseModel):
    items: List[ItemDetailRequest] = Field(..., min_length=1)
    customer_details: Optional[AddressDetail] = None

class CreateQrisPaymentRequest(BaseModel):
    items: List[ItemDetailRequest] = Field(..., min_length=1)
    customer_details: Optional[AddressDetail] = None

class CreatePaymentResponse(BaseModel):
    order_id: str
    token: str
    redirect_url: str

class CreateQrisPaymentResponse(BaseModel):
    order_id: str
    qr_string: str
    qr_url: Optional[str] = None

class ItemDetailResponse(BaseModel):
    id: str
    name: str
    price: int
    quantity: int

class TransactionResponse(BaseModel):
    order_id: str
    user_id: str
    amount: int
    items: List[ItemDetailResponse]
    status: TransactionStatus
    payment_type: str
    gateway_reference: str
    redirect_url: Optional[str] = None
    qr_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

class PaymentNotification(BaseModel):
    """Validated view of a gateway webhook body; unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    order_id: str = Field(..., min_length=1)
    transaction_status: str = Field(..., min_length=1)
    status_code: str
    gross_amount: str
    signature_key: str
    fraud_status: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_id: Optional[str] = None

# --- Identity ---

class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None

    @field_validator('password')
    def password_complexity(cls, v):
        if not validate_password_strength(v):
            raise ValueError('Password must be at least 8 characters long and contain uppercase, lowercase, and numbers')
        return v

    @field_validator('full_name', 'phone', 'address', 'city', 'postal_code')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class Token(BaseModel):
    access_token: str
    token_type: str
    expires_in: int
