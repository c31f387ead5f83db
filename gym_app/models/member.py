# gym_app/models/member.py

import uuid

from sqlalchemy import Index, UniqueConstraint

from .base import BaseModel, db


class Member(BaseModel):
    """Gym member; email is the natural key used by migrations"""

    __tablename__ = "members"

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name = db.Column(db.String(100), nullable=False, default="Member")
    last_name = db.Column(db.String(100), nullable=False, default="")
    # Source system id; only unique within one gym
    legacy_id = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    phone = db.Column(db.String(40), nullable=True)
    gender = db.Column(db.String(20), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="expired")
    package_id = db.Column(db.String(64), db.ForeignKey("packages.id"), nullable=True)
    membership_expiry = db.Column(db.Date, nullable=True)
    qr_code_data = db.Column(db.Text, nullable=True)
    gym_id = db.Column(db.String(64), nullable=False)

    package = db.relationship("Package", back_populates="members")

    __table_args__ = (
        Index("idx_member_gym_status", "gym_id", "status"),
        UniqueConstraint("gym_id", "legacy_id", name="uq_member_gym_legacy_id"),
    )

    def __repr__(self):
        return f"<Member {self.email or self.id}>"
