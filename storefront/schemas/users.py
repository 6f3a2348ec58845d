from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Optional, List
from datetime import datetime

from storefront.models.users import UserRole
from storefront.schemas.products import Pagination

SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'

def _check_password(v: str) -> str:
    if not any(c.isupper() for c in v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not any(c.islower() for c in v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not any(c.isdigit() for c in v):
        raise ValueError('Password must contain at least one number')
    if not any(c in SPECIAL_CHARACTERS for c in v):
        raise ValueError('Password must contain at least one special character')
    return v

def _check_name(v: str) -> str:
    if not v.strip():
        raise ValueError('Name cannot be empty or just whitespace')
    return v.strip()

class UserBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100, description="User's full name")
    email: EmailStr = Field(..., description="User's email address")

class UserCreate(UserBase):
    password: str = Field(..., min_length=8, max_length=64, description="User's password")
    phone: Optional[str] = Field(None, max_length=20)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        return _check_password(v)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

class UserResponse(UserBase):
    id: int
    phone: Optional[str] = None
    role: UserRole
    is_active: bool
    is_phone_verified: bool = False
    created_at: datetime
    last_login: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

class AddressBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip: str = Field(..., min_length=3, max_length=20)
    country: str = Field("India", min_length=2, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)

class AddressCreate(AddressBase):
    is_default: bool = False

class AddressUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    street: Optional[str] = Field(None, min_length=1, max_length=255)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = Field(None, min_length=1, max_length=100)
    zip: Optional[str] = Field(None, min_length=3, max_length=20)
    country: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)

class AddressResponse(AddressBase):
    id: int
    user_id: int
    is_default: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Team

class TeamInvite(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    role: UserRole = UserRole.SUPPORT

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v == UserRole.CUSTOMER:
            raise ValueError('Team members need a staff role')
        return v

class TeamRoleUpdate(BaseModel):
    role: UserRole

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v == UserRole.CUSTOMER:
            raise ValueError('Use remove to revoke staff access')
        return v

class TeamMember(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class TeamInviteResponse(BaseModel):
    member: TeamMember
    temporary_password: str

# Customers

class CustomerListItem(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    is_active: bool
    order_count: int
    total_spent: float
    last_order_at: Optional[datetime] = None
    created_at: datetime

class CustomerListResponse(BaseModel):
    customers: List[CustomerListItem]
    pagination: Pagination

class CustomerOrderSummary(BaseModel):
    id: int
    order_number: str
    status: str
    total: float
    created_at: datetime

class CustomerDetail(CustomerListItem):
    addresses: List[AddressResponse] = []
    orders: List[CustomerOrderSummary] = []
