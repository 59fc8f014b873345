import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from rehab_clinic.auth import jwt_handler
from rehab_clinic.database import get_db
from rehab_clinic.models.patient import Patient
from rehab_clinic.models.staff import Staff
from rehab_clinic.models.user import User

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def _user_from_token(token: str, db: Session) -> User:
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized to access this route") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    user = db.query(User).filter(User.id == int(subject)).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No user found with this token")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User account is deactivated")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    return _user_from_token(credentials.credentials, db)


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
    db: Session = Depends(get_db),
) -> User | None:
    if credentials is None:
        return None
    try:
        return _user_from_token(credentials.credentials, db)
    except HTTPException:
        return None


def require_roles(*roles: str):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        ensure_role(current_user, *roles)
        return current_user

    return dependency


def ensure_role(user: User, *roles: str) -> None:
    if user.role not in roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"User role {user.role} is not authorized to access this route",
        )


def is_clinic_user(user: User | None) -> bool:
    return user is not None and user.role in ("staff", "admin")


def patient_for_user(user: User, db: Session) -> Patient | None:
    """The patient record linked to a patient-role account (matched by email)."""
    return db.query(Patient).filter(Patient.email == user.email.lower()).first()


def staff_for_user(user: User, db: Session) -> Staff | None:
    return db.query(Staff).filter(Staff.email == user.email.lower()).first()


def owns_patient(user: User, patient_id: int, db: Session) -> bool:
    patient = patient_for_user(user, db)
    return patient is not None and patient.id == patient_id


def owns_staff(user: User, staff_id: int, db: Session) -> bool:
    staff = staff_for_user(user, db)
    return staff is not None and staff.id == staff_id
