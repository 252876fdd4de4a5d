# tributary/models/entities.py

from sqlalchemy import UniqueConstraint

from .base import BaseModel, db

class Partner(BaseModel):
    """A client organization, keyed by brand name."""

    __tablename__ = "partners"

    id = db.Column(db.Integer, primary_key=True)
    brand_name = db.Column(db.String(255), nullable=False, index=True)
    status = db.Column(db.String(50), nullable=True)
    tier = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    client_name = db.Column(db.String(255), nullable=True)
    client_email = db.Column(db.String(255), nullable=True)
    client_phone = db.Column(db.String(50), nullable=True)

    base_fee = db.Column(db.Float, nullable=True)
    commission_rate = db.Column(db.Float, nullable=True)
    billing_day = db.Column(db.Integer, nullable=True)

    onboarding_date = db.Column(db.Date, nullable=True)
    churned_date = db.Column(db.Date, nullable=True)

    parent_asin_count = db.Column(db.Integer, nullable=True)
    child_asin_count = db.Column(db.Integer, nullable=True)

    # {connector_kind: {tab_name: {header: raw_value}}}
    source_data = db.Column(db.JSON, nullable=True)

    assignments = db.relationship("PartnerAssignment", back_populates="partner", cascade="all, delete-orphan")
    weekly_statuses = db.relationship("WeeklyStatus", back_populates="partner", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Partner {self.brand_name}>"

class Staff(BaseModel):
    """A person on the team, keyed by full name."""

    __tablename__ = "staff"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    role = db.Column(db.String(100), nullable=True)
    department = db.Column(db.String(100), nullable=True)
    title = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=True)
    hire_date = db.Column(db.Date, nullable=True)
    slack_id = db.Column(db.String(50), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    source_data = db.Column(db.JSON, nullable=True)

    manager = db.relationship("Staff", remote_side=[id])

    def __repr__(self):
        return f"<Staff {self.full_name}>"

class Asin(BaseModel):
    """A product record, keyed by its ASIN code."""

    __tablename__ = "asins"

    id = db.Column(db.Integer, primary_key=True)
    asin_code = db.Column(db.String(20), nullable=False, index=True)
    title = db.Column(db.String(500), nullable=True)
    sku = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(50), nullable=True)
    parent_asin = db.Column(db.String(20), nullable=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=True, index=True)
    source_data = db.Column(db.JSON, nullable=True)

    partner = db.relationship("Partner")

    def __repr__(self):
        return f"<Asin {self.asin_code}>"

class PartnerAssignment(BaseModel):
    """Role-tagged link between a partner and a staff member."""

    __tablename__ = "partner_assignments"

    id = db.Column(db.Integer, primary_key=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True)
    assignment_role = db.Column(db.String(50), nullable=False)

    partner = db.relationship("Partner", back_populates="assignments")
    staff = db.relationship("Staff")

    __table_args__ = (
        UniqueConstraint("partner_id", "staff_id", "assignment_role", name="uq_partner_assignments_triple"),
    )

# Entity kind identifiers used by tab mappings and the field registry.
ENTITY_MODELS = {
    "partners": Partner,
    "staff": Staff,
    "asins": Asin,
}
