import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.orm import Session

from rehab_clinic.auth import jwt_handler
from rehab_clinic.auth.dependencies import get_current_user, get_optional_user
from rehab_clinic.auth.passwords import generate_reset_token, hash_password, hash_reset_token, verify_password
from rehab_clinic.core import config
from rehab_clinic.database import get_db
from rehab_clinic.models.patient import Patient
from rehab_clinic.models.staff import Staff
from rehab_clinic.models.user import USER_ROLES, User
from rehab_clinic.routes.common import MessageResponse, database_errors, normalize_phone, require_text

router = APIRouter(tags=['auth'])
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _validate_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
    return value


class RegisterRequest(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str
    phone: str | None = None
    role: str = 'patient'

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return require_text(value, 'Name', 1, 50)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in USER_ROLES:
            raise ValueError('Role must be patient, staff, or admin.')
        return normalized


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UpdateDetailsRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return require_text(value, 'Name', 1, 50)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        return value.strip().lower() if value else None

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)


class UpdatePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)


class ForgotPasswordRequest(BaseModel):
    email: str

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ResetPasswordRequest(BaseModel):
    password: str

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)


class UserResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: str
    phone: str | None = None
    is_active: bool
    last_login: datetime | None = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    user: UserResponse


def ensure_email_unlinked(db: Session, email: str) -> None:
    """Reject an address that would attach the account to someone else's clinic record."""
    linked = (
        db.query(Patient).filter(Patient.email == email).first()
        or db.query(Staff).filter(Staff.email == email).first()
    )
    if linked is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='This email belongs to another clinic record',
        )


def build_token_response(user: User) -> TokenResponse:
    token = jwt_handler.create_access_token(subject=str(user.id), role=user.role)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.post('/register', response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    data: RegisterRequest,
    db: Session = Depends(get_db),
    current_user: User | None = Depends(get_optional_user),
):
    if data.role != 'patient' and (current_user is None or current_user.role != 'admin'):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only admins can create staff or admin accounts.',
        )

    with database_errors(db):
        if db.query(User).filter(User.email == data.email).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='User already exists with this email',
            )

        user = User(
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            hashed_password=hash_password(data.password),
            phone=data.phone,
            role=data.role,
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

    logger.info('Registered %s account %s', user.role, user.id)
    return build_token_response(user)


@router.post('/login', response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    if not data.email or not data.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Please provide email and password',
        )

    with database_errors(db):
        user = db.query(User).filter(User.email == data.email).first()
        if user is None or not verify_password(data.password, user.hashed_password):
            logger.info('Failed login attempt for %s', data.email)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid credentials')
        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='User account is deactivated')

        user.last_login = datetime.now()
        db.commit()
        db.refresh(user)

    return build_token_response(user)


@router.get('/me', response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.put('/updatedetails', response_model=UserResponse)
def update_details(
    data: UpdateDetailsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True, exclude_none=True)

    with database_errors(db):
        user = db.get(User, current_user.id)
        if 'email' in changes and changes['email'] != user.email:
            taken = db.query(User).filter(User.email == changes['email'], User.id != user.id).first()
            if taken:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail='User already exists with this email',
                )
            ensure_email_unlinked(db, changes['email'])
        for field, value in changes.items():
            setattr(user, field, value)
        db.commit()
        db.refresh(user)
        return user


@router.put('/updatepassword', response_model=TokenResponse)
def update_password(
    data: UpdatePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        user = db.get(User, current_user.id)
        if not verify_password(data.current_password, user.hashed_password):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Password is incorrect')

        user.hashed_password = hash_password(data.new_password)
        db.commit()
        db.refresh(user)

    return build_token_response(user)


@router.get('/logout', response_model=MessageResponse)
def logout():
    # Tokens are stateless; the client discards its copy
    return MessageResponse(message='User logged out successfully')


@router.post('/forgotpassword', response_model=MessageResponse)
def forgot_password(data: ForgotPasswordRequest, db: Session = Depends(get_db)):
    with database_errors(db):
        user = db.query(User).filter(User.email == data.email).first()
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='There is no user with that email')

        token, digest = generate_reset_token()
        user.reset_password_token = digest
        user.reset_password_expires = datetime.now() + timedelta(minutes=config.PASSWORD_RESET_EXPIRES_MINUTES)
        db.commit()

    # No mail transport is configured; operators relay the token from the log
    logger.info('Password reset token for user %s: %s', user.id, token, extra={'user_id': user.id})
    return MessageResponse(message='Password reset token sent')


@router.put('/resetpassword/{reset_token}', response_model=TokenResponse)
def reset_password(reset_token: str, data: ResetPasswordRequest, db: Session = Depends(get_db)):
    with database_errors(db):
        user = db.query(User).filter(
            User.reset_password_token == hash_reset_token(reset_token),
            User.reset_password_expires > datetime.now(),
        ).first()
        if user is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid token')

        user.hashed_password = hash_password(data.password)
        user.reset_password_token = None
        user.reset_password_expires = None
        db.commit()
        db.refresh(user)

    return build_token_response(user)
