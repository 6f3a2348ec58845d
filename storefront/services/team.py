import logging
import secrets
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from storefront.core.exceptions import ConflictError, ForbiddenError, ResourceNotFoundError
from storefront.core.security import hash_password
from storefront.models.users import User, UserRole
from storefront.schemas.users import TeamInvite
from storefront.services.audit import record_audit

logger = logging.getLogger(__name__)


class TeamService:
    def __init__(self, db: Session):
        self.db = db

    def list_members(self) -> List[User]:
        return self.db.query(User).filter(User.role != UserRole.CUSTOMER).order_by(User.name).all()

    def _get_member(self, user_id: int) -> User:
        member = self.db.query(User).filter(User.id == user_id, User.role != UserRole.CUSTOMER).first()
        if not member:
            raise ResourceNotFoundError("Team member", user_id)
        return member

    def invite(self, invite: TeamInvite, actor_id: Optional[int] = None) -> Tuple[User, str]:
        """Create (or promote) a staff account; returns the member and a one-time password."""
        email = invite.email.lower()
        temporary_password = secrets.token_urlsafe(12)
        user = self.db.query(User).filter(User.email == email).first()
        if user is not None:
            if user.role != UserRole.CUSTOMER:
                raise ConflictError(f"{email} is already a team member")
            user.role = invite.role
            user.password_hash = hash_password(temporary_password)
        else:
            user = User(
                name=invite.name,
                email=email,
                role=invite.role,
                password_hash=hash_password(temporary_password),
            )
            self.db.add(user)
        self.db.flush()
        record_audit(self.db, actor_id, "invite", "team_member", user.id, {"role": invite.role.value})
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Team member {user.id} invited with role {invite.role.value}")
        return user, temporary_password

    def change_role(self, user_id: int, role: UserRole, actor_id: int) -> User:
        if user_id == actor_id:
            raise ForbiddenError("You cannot change your own role")
        member = self._get_member(user_id)
        previous = member.role
        member.role = role
        record_audit(self.db, actor_id, "change_role", "team_member", member.id, {
            "from": previous.value, "to": role.value,
        })
        self.db.commit()
        self.db.refresh(member)
        logger.info(f"Team member {member.id} role changed {previous.value} -> {role.value}")
        return member

    def remove(self, user_id: int, actor_id: int) -> None:
        if user_id == actor_id:
            raise ForbiddenError("You cannot remove yourself from the team")
        member = self._get_member(user_id)
        previous = member.role
        member.role = UserRole.CUSTOMER
        record_audit(self.db, actor_id, "remove", "team_member", member.id, {"role": previous.value})
        self.db.commit()
        logger.info(f"Team member {member.id} removed (was {previous.value})")
