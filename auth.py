from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import select

from config import ALGORITHM, Settings
from database import UserModel
from errors import AuthError, StoreUnavailable, ValidationError
from schemas import UserOut, UserRegister

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass(frozen=True)
class Identity:
    """Who is signed in. Only ``uid`` takes part in authorization."""
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None


# ----------------------------------------------------------------------------
# Admin gate
# ----------------------------------------------------------------------------
class AdminGate:
    def __init__(self, admin_uids: Iterable[str]):
        self._admin_uids = frozenset(uid for uid in admin_uids if uid)
        if not self._admin_uids:
            logger.error("No admin uids configured; nobody can add or edit records.")

    def is_admin(self, identity: Optional[Identity]) -> bool:
        return identity is not None and identity.uid in self._admin_uids

# ----------------------------------------------------------------------------
# Auth helpers
# ----------------------------------------------------------------------------

def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def create_access_token(data: dict, secret_key: str, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, secret_key, algorithm=ALGORITHM)
    return encoded_jwt

def decode_access_token(token: str, secret_key: str) -> str:
    try:
        payload = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise AuthError("Could not validate credentials") from exc
    uid: Optional[str] = payload.get("sub")
    if uid is None:
        raise AuthError("Could not validate credentials")
    return uid


def _identity(user: UserModel) -> Identity:
    return Identity(uid=user.uid, email=user.email, name=user.name)


class AuthService:
    """Accounts, password checks and bearer tokens."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings):
        self._session_factory = session_factory
        self._settings = settings

    async def _find(self, clause) -> Optional[UserModel]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(UserModel).where(clause))
                return result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("User lookup failed: %s", exc)
            raise StoreUnavailable("Could not reach the account store") from exc

    async def register(self, payload: UserRegister) -> UserOut:
        if await self._find(UserModel.email == payload.email) is not None:
            raise ValidationError("Email already registered")
        user = UserModel(
            uid=uuid4().hex,
            name=payload.name,
            email=payload.email,
            password_hash=get_password_hash(payload.password),
        )
        try:
            async with self._session_factory() as session:
                session.add(user)
                await session.commit()
                await session.refresh(user)
        except IntegrityError as exc:
            # another registration took the email between the check and the insert
            raise ValidationError("Email already registered") from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Could not register %s: %s", payload.email, exc)
            raise StoreUnavailable("Could not reach the account store") from exc
        return UserOut.model_validate(user)

    async def authenticate(self, email: str, password: str) -> Identity:
        user = await self._find(UserModel.email == email)
        if not user or not verify_password(password, user.password_hash):
            raise AuthError("Incorrect email or password")
        return _identity(user)

    def issue_token(self, identity: Identity) -> str:
        return create_access_token(
            {"sub": identity.uid},
            self._settings.secret_key,
            timedelta(minutes=self._settings.access_token_expire_minutes),
        )

    async def identity_from_token(self, token: str) -> Identity:
        uid = decode_access_token(token, self._settings.secret_key)
        user = await self._find(UserModel.uid == uid)
        if user is None:
            raise AuthError("Could not validate credentials")
        return _identity(user)


IdentityListener = Callable[[Optional[Identity]], None]


class AuthSession:
    """Sign-in state of one client, publishing every identity change.

    Listeners are called once on subscribe with the current identity, then on
    each sign in and sign out.
    """

    def __init__(self, service: AuthService):
        self._service = service
        self._listeners: List[IdentityListener] = []
        self.identity: Optional[Identity] = None

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self.identity)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        for listener in list(self._listeners):
            listener(self.identity)

    async def sign_in(self, email: str, password: str) -> Identity:
        self.identity = await self._service.authenticate(email, password)
        self._publish()
        return self.identity

    async def sign_out(self) -> None:
        self.identity = None
        self._publish()
