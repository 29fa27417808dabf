from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import AuditSpec, Base, new_id


class ProgramRole(str, enum.Enum):
    ADMIN = "Admin"
    EDIT = "Edit"
    RESPOND = "Respond"
    READ_ONLY = "ReadOnly"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    users: Mapped[list["User"]] = relationship(back_populates="company")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email"),)
    __audit__ = AuditSpec(
        object_type="user",
        event_prefix="User",
        fields=("email", "full_name", "company_id", "is_company_admin", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(200), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id"), nullable=True, index=True)
    is_company_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_super_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    company: Mapped[Company | None] = relationship(back_populates="users")
    memberships: Mapped[list["ProgramMembership"]] = relationship(back_populates="user")


class ProgramMembership(Base):
    __tablename__ = "program_memberships"
    __table_args__ = (UniqueConstraint("program_id", "user_id"),)
    __audit__ = AuditSpec(
        object_type="program_user",
        event_prefix="ProgramUser",
        fields=("program_id", "user_id", "role"),
        created="UserAdded",
        updated="UserRoleChanged",
        deleted="UserRemoved",
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    program_id: Mapped[str] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    role: Mapped[ProgramRole] = mapped_column(
        Enum(ProgramRole, native_enum=False, values_callable=_enum_values, length=16),
        default=ProgramRole.RESPOND,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user: Mapped[User] = relationship(back_populates="memberships")
