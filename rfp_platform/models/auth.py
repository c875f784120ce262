"""
Auth Models — companies and users.

Every user belongs to exactly one company and carries one of two roles:
buyers run RFPs for their company; suppliers answer the RFPs they were
invited to.
"""

from datetime import datetime, timezone

from rfp_platform.models import db

USER_ROLES = {"buyer", "supplier"}


# ═══════════════════════════════════════════════════════════════
# 1. COMPANIES
# ═══════════════════════════════════════════════════════════════
class Company(db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    users = db.relationship("User", back_populates="company", lazy="dynamic", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Company {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    email = db.Column(db.String(200), nullable=False, unique=True)
    password_hash = db.Column(db.String(256))
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default="buyer")  # buyer | supplier
    is_active = db.Column(db.Boolean, default=True)
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    company = db.relationship("Company", back_populates="users")

    @property
    def is_buyer(self):
        return self.role == "buyer"

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
