from sqlalchemy.orm import Session
from typing import Optional

from ..core.clock import utcnow
from ..core.errors import InvalidArgument, Unauthenticated
from ..core.security import UserRole, create_token_for, get_password_hash, verify_password
from ..models.user import User
from ..schemas.auth import TokenResponse, UserLogin, UserRegister, UserResponse

class AuthService:
    def __init__(self, db: Session):
        self.db = db

    def register_user(self, user_data: UserRegister, role: UserRole = UserRole.PATIENT) -> User:
        """Register a new user."""
        email = user_data.email.lower()
        existing_user = self.db.query(User).filter(User.email == email).first()
        if existing_user:
            raise InvalidArgument("Email already registered")

        new_user = User(
            email=email,
            password_hash=get_password_hash(user_data.password),
            full_name=user_data.full_name,
            role=role,
            is_active=True,
        )
        self.db.add(new_user)
        self.db.commit()
        self.db.refresh(new_user)
        return new_user

    def authenticate_user(self, login_data: UserLogin) -> TokenResponse:
        """Authenticate user and return an access token."""
        user = self.db.query(User).filter(
            User.email == login_data.email.lower()
        ).first()

        if not user or not verify_password(login_data.password, user.password_hash):
            raise Unauthenticated("Invalid email or password")
        if not user.is_active:
            raise Unauthenticated("Account is deactivated")

        user.last_login = utcnow()
        self.db.commit()
        self.db.refresh(user)

        token = create_token_for(user.id, user.email, user.role)
        return TokenResponse(
            access_token=token.access_token,
            token_type=token.token_type,
            expires_in=token.expires_in,
            user=UserResponse.from_user(user),
        )

    def set_push_token(self, user: User, push_token: Optional[str]) -> User:
        """Store (or clear) the device token used for queue notifications."""
        user.push_token = (push_token or "").strip() or None
        self.db.commit()
        self.db.refresh(user)
        return user
