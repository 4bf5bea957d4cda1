import logging
import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from jose import jwt, JWTError
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

import config
from errors import AuthError, ConflictError, NotFoundError, ValidationError
from notifications import Notifier
from schemas import SELF_SERVICE_ROLES, User as UserSchema, utcnow
from utils import parse_obj_id, public_user

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

EMAIL_RE = re.compile(
    r'(([^<>()\[\]\\.,;:\s@"]+(\.[^<>()\[\]\\.,;:\s@"]+)*)|(".+"))@'
    r'((\[[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}])|(([a-zA-Z\-0-9]+\.)+[a-zA-Z]{2,}))'
)
MIN_PASSWORD_LENGTH = 6
GENERATED_PASSWORD_LENGTH = 8
GENERATED_PASSWORD_ALPHABET = string.ascii_letters + string.digits
INVALID_LOGIN = "Invalid email or password"


def validate_email(email: str) -> bool:
    return EMAIL_RE.fullmatch(str(email).lower()) is not None


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(GENERATED_PASSWORD_ALPHABET) for _ in range(length))


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class CredentialService:
    """Registration, login, password reset and role changes for marketplace users.

    Tokens are HS256 JWTs carrying ``{id, role}``. A role change issues a fresh
    token; tokens minted before the change stay valid until they expire.
    """

    def __init__(
        self,
        database,
        notifier: Optional[Notifier] = None,
        secret_key: Optional[str] = None,
        expire_minutes: Optional[int] = None,
    ):
        self.users = database["user"]
        self.notifier = notifier or Notifier()
        self.secret_key = secret_key or config.SECRET_KEY
        self.expire_minutes = expire_minutes or config.ACCESS_TOKEN_EXPIRE_MINUTES

    # Tokens

    def issue_token(self, user: Dict[str, Any]) -> str:
        user_id = user.get("_id", user.get("id"))
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.expire_minutes)
        claims = {"id": str(user_id), "role": user.get("role"), "exp": expire}
        return jwt.encode(claims, self.secret_key, algorithm=config.ALGORITHM)

    def decode_token(self, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[config.ALGORITHM])
        except JWTError:
            raise AuthError("Token is not valid")
        if not payload.get("id"):
            raise AuthError("Token is not valid")
        return payload

    # Users

    def get_user(self, user_id: str) -> Dict[str, Any]:
        obj_id = parse_obj_id(user_id)
        user = self.users.find_one({"_id": obj_id}) if obj_id else None
        if not user:
            raise NotFoundError("User not found")
        return user

    def register(
        self,
        username: Optional[str],
        fullname: Optional[str],
        email: Optional[str],
        password: Optional[str],
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        username = (username or "").strip()
        email = normalize_email(email)
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required")
        if not validate_email(email):
            raise ValidationError("Invalid email format")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if role and role not in SELF_SERVICE_ROLES:
            raise ValidationError("Invalid role")

        if self.users.find_one({"$or": [{"username": username}, {"email": email}]}):
            raise ConflictError("Username or email already exists")

        user_doc = UserSchema(
            username=username,
            fullname=fullname,
            email=email,
            password_hash=hash_password(password),
            role=role or "buyer",
        ).model_dump()

        try:
            res = self.users.insert_one(user_doc)
        except DuplicateKeyError:
            raise ConflictError("Username or email already exists")
        user_doc["_id"] = res.inserted_id
        logger.info("Registered user %s (%s) as %s", username, user_doc["_id"], user_doc["role"])

        if not self.notifier.configured:
            logger.warning("Notifications not configured; no welcome email for %s", email)
        else:
            try:
                self.notifier.send(email, "Welcome to Shoppii", "Thank you for registering with us!")
            except Exception:
                logger.exception("Failed to send welcome email to %s", email)

        return public_user(user_doc)

    def login(self, email: Optional[str], password: Optional[str]) -> Tuple[str, Dict[str, Any]]:
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password are required")
        user = self.users.find_one({"email": email})
        if not user or not verify_password(password, user.get("password_hash", "")):
            logger.info("Failed login for %s", email)
            raise AuthError(INVALID_LOGIN)
        return self.issue_token(user), public_user(user)

    def forgot_password(self, email: Optional[str]) -> None:
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        user = self.users.find_one({"email": email})
        if not user:
            raise NotFoundError("User not found")

        new_password = generate_password()
        # Store the hash as-is; nothing downstream hashes it again.
        self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
        )
        logger.info("Password reset for user %s", user["_id"])

        self.notifier.send(user["email"], "Your new password", f"Your new password is: {new_password}")

    def change_role(self, user_id: str, new_role: Optional[str]) -> Tuple[str, Dict[str, Any]]:
        if not new_role:
            raise ValidationError("New role is required")
        if new_role not in SELF_SERVICE_ROLES:
            raise ValidationError("Invalid role")

        user = self.get_user(user_id)
        self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"role": new_role, "updated_at": utcnow()}},
        )
        user["role"] = new_role
        logger.info("User %s switched role to %s", user["_id"], new_role)
        return self.issue_token(user), public_user(user)
