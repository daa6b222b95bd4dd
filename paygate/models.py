from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, EmailStr, Field

from paygate.status import TransactionStatus

class ItemDetailDB(BaseModel):
    id: str
    name: str
    price: int
    quantity: int

    @property
    def subtotal(self) -> int:
        return self.price * self.quantity

class TransactionDB(BaseModel):
    order_id: str = Field(..., alias="_id")
    user_id: str
    amount: int
    items: List[ItemDetailDB]
    status: TransactionStatus = TransactionStatus.PENDING
    payment_type: str # snap, qris
    gateway_reference: str # snap token or qr string
    redirect_url: Optional[str] = None
    qr_url: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class UserDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    email: EmailStr
    password_hash: str
    full_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class UserProfile(BaseModel):
    """Outward view of a user; never carries the password hash."""
    id: str
    email: EmailStr
    full_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    created_at: datetime
