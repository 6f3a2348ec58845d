import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.exceptions import (
    ForbiddenError, InvalidCredentialsError, ResourceNotFoundError, UserAlreadyExistsError,
)
from storefront.core.security import create_session_token, hash_password, verify_password
from storefront.models.users import Address, BACKOFFICE_LOGIN_ROLES, User, UserRole
from storefront.schemas.users import AddressCreate, AddressUpdate, UserCreate

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ResourceNotFoundError("User", user_id)
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.lower()).first()

    def create_user(self, user_data: UserCreate, role: UserRole = UserRole.CUSTOMER) -> User:
        email = user_data.email.lower()
        if self.get_user_by_email(email):
            raise UserAlreadyExistsError(email)

        try:
            db_user = User(
                name=user_data.name,
                email=email,
                phone=user_data.phone,
                password_hash=hash_password(user_data.password),
                role=role,
            )
            self.db.add(db_user)
            self.db.commit()
            self.db.refresh(db_user)
        except IntegrityError:
            self.db.rollback()
            raise UserAlreadyExistsError(email)
        logger.info(f"Created user {db_user.id} with role {role.value}")
        return db_user

    def authenticate(self, email: str, password: str) -> User:
        user = self.get_user_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentialsError()
        return user

    def issue_token(self, user: User) -> str:
        user.last_login = datetime.utcnow()
        self.db.commit()
        self.db.refresh(user)
        return create_session_token(user.id, user.email, user.role.value)

    def login(self, email: str, password: str) -> tuple:
        user = self.authenticate(email, password)
        if not user.is_active:
            raise ForbiddenError("Account is inactive")
        return self.issue_token(user), user

    def admin_login(self, email: str, password: str) -> tuple:
        """Back-office login: only active admin and ops accounts get a token."""
        user = self.authenticate(email, password)
        if not user.is_active:
            logger.warning(f"Inactive staff account {user.id} attempted back-office login")
            raise ForbiddenError("Account is inactive")
        if user.role not in BACKOFFICE_LOGIN_ROLES:
            logger.warning(f"User {user.id} with role {user.role.value} denied back-office access")
            raise ForbiddenError("Access denied. Admin or ops role required")
        return self.issue_token(user), user


class AddressService:
    def __init__(self, db: Session):
        self.db = db

    def list_addresses(self, user_id: int) -> List[Address]:
        return self.db.query(Address).filter(Address.user_id == user_id).order_by(
            Address.is_default.desc(), Address.id
        ).all()

    def get_address(self, address_id: int, user_id: int) -> Address:
        address = self.db.query(Address).filter(
            Address.id == address_id, Address.user_id == user_id
        ).first()
        if not address:
            raise ResourceNotFoundError("Address", address_id)
        return address

    def _clear_default(self, user_id: int, keep_id: Optional[int] = None) -> None:
        query = self.db.query(Address).filter(Address.user_id == user_id, Address.is_default.is_(True))
        if keep_id is not None:
            query = query.filter(Address.id != keep_id)
        query.update({Address.is_default: False}, synchronize_session=False)

    def create_address(self, user_id: int, address_data: AddressCreate) -> Address:
        # The first address becomes the default
        has_addresses = self.db.query(Address.id).filter(Address.user_id == user_id).first() is not None
        is_default = address_data.is_default or not has_addresses
        if is_default:
            self._clear_default(user_id)
        address = Address(user_id=user_id, **address_data.model_dump(exclude={"is_default"}), is_default=is_default)
        self.db.add(address)
        self.db.commit()
        self.db.refresh(address)
        return address

    def update_address(self, address_id: int, user_id: int, address_data: AddressUpdate) -> Address:
        address = self.get_address(address_id, user_id)
        for key, value in address_data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(address, key, value)
        self.db.commit()
        self.db.refresh(address)
        return address

    def set_default(self, address_id: int, user_id: int) -> Address:
        address = self.get_address(address_id, user_id)
        self._clear_default(user_id, keep_id=address.id)
        address.is_default = True
        self.db.commit()
        self.db.refresh(address)
        return address

    def delete_address(self, address_id: int, user_id: int) -> None:
        address = self.get_address(address_id, user_id)
        was_default = address.is_default
        self.db.delete(address)
        self.db.flush()
        if was_default:
            replacement = self.db.query(Address).filter(Address.user_id == user_id).order_by(Address.id).first()
            if replacement:
                replacement.is_default = True
        self.db.commit()
