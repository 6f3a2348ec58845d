from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.core.responses import success_response
from storefront.models.database import get_db
from storefront.models.users import User
from storefront.schemas.users import (
    AddressCreate, AddressResponse, AddressUpdate, LoginRequest, SessionResponse, UserCreate, UserResponse,
)
from storefront.services.users import AddressService, UserService

auth_router = APIRouter()
addresses_router = APIRouter()

def _session(token: str, user: User) -> dict:
    return success_response(SessionResponse(access_token=token, user=UserResponse.model_validate(user)))

@auth_router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(user: UserCreate, db: Session = Depends(get_db)):
    """
    Create a customer account and return a session token.

    Password requirements:
    - 8 to 64 characters
    - At least one uppercase and one lowercase letter
    - At least one number and one special character
    """
    service = UserService(db)
    db_user = service.create_user(user)
    return _session(service.issue_token(db_user), db_user)

@auth_router.post("/login")
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    token, user = UserService(db).login(credentials.email, credentials.password)
    return _session(token, user)

@auth_router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return success_response(UserResponse.model_validate(current_user))

@addresses_router.get("")
def list_addresses(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    addresses = AddressService(db).list_addresses(current_user.id)
    return success_response([AddressResponse.model_validate(a) for a in addresses])

@addresses_router.post("", status_code=status.HTTP_201_CREATED)
def create_address(
    address: AddressCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    created = AddressService(db).create_address(current_user.id, address)
    return success_response(AddressResponse.model_validate(created))

@addresses_router.get("/{address_id}")
def get_address(address_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    address = AddressService(db).get_address(address_id, current_user.id)
    return success_response(AddressResponse.model_validate(address))

@addresses_router.put("/{address_id}")
def update_address(
    address_id: int,
    address: AddressUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    updated = AddressService(db).update_address(address_id, current_user.id, address)
    return success_response(AddressResponse.model_validate(updated))

@addresses_router.post("/{address_id}/default")
def set_default_address(address_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    address = AddressService(db).set_default(address_id, current_user.id)
    return success_response(AddressResponse.model_validate(address))

@addresses_router.delete("/{address_id}")
def delete_address(address_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    AddressService(db).delete_address(address_id, current_user.id)
    return success_response({"deleted": True})
