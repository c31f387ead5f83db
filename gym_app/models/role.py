# gym_app/models/role.py

import uuid

from .base import BaseModel, db


class Role(BaseModel):
    """Staff role (trainer, receptionist, ...)"""

    __tablename__ = "roles"

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(50), unique=True, nullable=False, index=True)
    gym_id = db.Column(db.String(64), nullable=True, index=True)

    staff = db.relationship("Staff", back_populates="role")

    def __repr__(self):
        return f"<Role {self.name}>"
