import logging
from dataclasses import dataclass

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from visitdesk.core.config import Settings
from visitdesk.core.exceptions import AuthenticationError, AuthorizationError, ValidationError
from visitdesk.core.security import (
    create_access_token,
    dummy_password_hash,
    generate_password,
    hash_password,
    verify_password,
)
from visitdesk.core.timeutil import utcnow
from visitdesk.db.models import Operator, OperatorRole
from visitdesk.services.audit_service import write_audit_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    id: int
    username: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == OperatorRole.admin.value


def principal_for(operator: Operator) -> Principal:
    return Principal(
        id=operator.id,
        username=operator.username,
        email=operator.email,
        role=operator.role.value,
    )


def serialize_operator(operator: Operator) -> dict:
    return {
        "id": operator.id,
        "username": operator.username,
        "email": operator.email,
        "role": operator.role.value,
    }


def find_operator(db: Session, login_key: str) -> Operator | None:
    return (
        db.query(Operator)
        .filter(or_(Operator.username == login_key, Operator.email == login_key))
        .first()
    )


def login(
    db: Session,
    username: str | None,
    password: str | None,
    user_agent: str = "",
    ip_address: str = "",
    audit: bool = True,
    settings: Settings | None = None,
) -> dict:
    login_key = (username or "").strip()
    if not login_key or not password:
        raise ValidationError("Username and password are required", code="MISSING_CREDENTIALS")

    operator = find_operator(db, login_key)
    if operator is None:
        # Same hashing cost as a wrong password on a real account.
        verify_password(password, dummy_password_hash(settings))
        raise AuthenticationError("Invalid credentials", code="INVALID_CREDENTIALS")

    if not operator.is_active:
        raise AuthorizationError("Account is disabled", code="ACCOUNT_DISABLED")

    if not verify_password(password, operator.password_hash):
        raise AuthenticationError("Invalid credentials", code="INVALID_CREDENTIALS")

    try:
        operator.last_login = utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("could not update last login for %s: %s", operator.username, exc)

    token = create_access_token(
        subject=str(operator.id),
        role=operator.role.value,
        username=operator.username,
        email=operator.email,
        settings=settings,
    )
    if audit:
        write_audit_event(
            db,
            operator_id=operator.id,
            action="LOGIN",
            table_name="operators",
            record_id=operator.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    logger.info("operator %s logged in from %s", operator.username, ip_address or "-")
    return {"token": token, "user": serialize_operator(operator)}


def create_operator(
    db: Session,
    username: str,
    email: str,
    password: str,
    role: OperatorRole = OperatorRole.reception,
    is_active: bool = True,
    settings: Settings | None = None,
) -> Operator:
    operator = Operator(
        username=username,
        email=email,
        password_hash=hash_password(password, settings),
        role=role,
        is_active=is_active,
    )
    db.add(operator)
    db.commit()
    db.refresh(operator)
    return operator


def ensure_bootstrap_admin(db: Session, settings: Settings) -> Operator:
    """Upsert the default administrator configured in the environment."""
    configured_password = settings.ADMIN_DEFAULT_PASSWORD
    existing = (
        db.query(Operator)
        .filter(or_(Operator.username == settings.ADMIN_USERNAME, Operator.email == settings.ADMIN_EMAIL))
        .first()
    )
    if existing is not None:
        existing.role = OperatorRole.admin
        existing.is_active = True
        if configured_password:
            existing.password_hash = hash_password(configured_password, settings)
        db.commit()
        logger.info("bootstrap admin %s updated", existing.username)
        return existing

    password = configured_password or generate_password()
    try:
        admin = create_operator(
            db,
            username=settings.ADMIN_USERNAME,
            email=settings.ADMIN_EMAIL,
            password=password,
            role=OperatorRole.admin,
            settings=settings,
        )
    except IntegrityError:
        # Another worker created it first.
        db.rollback()
        return find_operator(db, settings.ADMIN_USERNAME)
    if not configured_password:
        logger.warning(
            "bootstrap admin %s created with generated password %s; set ADMIN_DEFAULT_PASSWORD to choose one",
            admin.username,
            password,
        )
    else:
        logger.info("bootstrap admin %s created", admin.username)
    return admin
