# gym_app/models/staff.py

import uuid

from sqlalchemy import UniqueConstraint

from .base import BaseModel, db


class Staff(BaseModel):
    """Gym employee with a role"""

    __tablename__ = "staff"

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name = db.Column(db.String(100), nullable=False, default="Staff")
    last_name = db.Column(db.String(100), nullable=False, default="")
    legacy_id = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    phone = db.Column(db.String(40), nullable=True)
    role_name = db.Column(db.String(50), nullable=True)
    role_id = db.Column(db.String(64), db.ForeignKey("roles.id"), nullable=True)
    gym_id = db.Column(db.String(64), nullable=False, index=True)
    qr_code = db.Column(db.Text, nullable=True)
    hire_date = db.Column(db.Date, nullable=True)

    role = db.relationship("Role", back_populates="staff")

    __table_args__ = (UniqueConstraint("gym_id", "legacy_id", name="uq_staff_gym_legacy_id"),)

    def __repr__(self):
        return f"<Staff {self.email or self.id}>"
