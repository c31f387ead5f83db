# gym_app/models/package.py

import uuid

from .base import BaseModel, db


class Package(BaseModel):
    """Membership package (plan) sold by a gym"""

    __tablename__ = "packages"

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(200), unique=True, nullable=False, index=True)
    price = db.Column(db.Numeric(10, 2), default=0, nullable=False)
    duration_value = db.Column(db.Integer, default=30, nullable=False)
    duration_unit = db.Column(db.String(20), default="days", nullable=False)
    number_of_passes = db.Column(db.Integer, default=0, nullable=False)
    access_level = db.Column(db.String(50), default="off_peak_hours", nullable=False)
    requires_trainer = db.Column(db.Boolean, default=False, nullable=False)
    description = db.Column(db.Text, nullable=True)
    archived = db.Column(db.Boolean, default=False, nullable=False)
    gym_id = db.Column(db.String(64), nullable=False, index=True)

    members = db.relationship("Member", back_populates="package")

    def __repr__(self):
        return f"<Package {self.name}>"
