from sqlalchemy import Column, Integer, String, DateTime, Enum, UniqueConstraint
from datetime import datetime
import enum
from storefront.db.base_class import Base


class OtpPurpose(str, enum.Enum):
    PASSWORD_RESET = "password_reset"
    EMAIL_UPDATE = "email_update"


class Otp(Base):
    """One live code per (email, purpose); re-sending overwrites it."""

    __tablename__ = "otps"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    purpose = Column(Enum(OtpPurpose), nullable=False)
    code = Column(String(6), nullable=False)
    new_email = Column(String(255), nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("email", "purpose", name="unique_email_purpose_otp"),
    )

    @property
    def is_expired(self) -> bool:
        return self.expires_at < datetime.utcnow()
