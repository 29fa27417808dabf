from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Date, DateTime, Float, ForeignKey, Integer, Sequence, String, Text
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from app.db.base import AuditSpec, Base, new_id

# Used where the dialect supports sequences (PostgreSQL); elsewhere the next
# number is derived from the current maximum inside the creating transaction.
global_submission_id_seq = Sequence("global_submission_id_seq", start=1_000_000, metadata=Base.metadata)
GLOBAL_SUBMISSION_ID_START = 1_000_000


class Program(Base):
    __tablename__ = "programs"
    __audit__ = AuditSpec(
        object_type="pilot_program",
        event_prefix="Program",
        fields=("name", "description", "company_id", "status", "start_date", "end_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id"), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Roll-up caches; always recomputable from live rows (app/services/maintenance.py).
    total_sites: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_submissions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    sites: Mapped[list["Site"]] = relationship(back_populates="program")

    @property
    def program_id(self) -> str:
        return self.id


class Site(Base):
    __tablename__ = "sites"
    __audit__ = AuditSpec(
        object_type="site",
        event_prefix="Site",
        fields=(
            "program_id",
            "name",
            "site_type",
            "timezone",
            "submission_defaults",
            "petri_defaults",
            "gasifier_defaults",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    program_id: Mapped[str] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    site_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Pre-fill for new submissions at this site; see create_session.
    submission_defaults: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    petri_defaults: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    gasifier_defaults: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    program: Mapped[Program] = relationship(back_populates="sites")

    @property
    def site_id(self) -> str:
        return self.id


class Submission(Base):
    __tablename__ = "submissions"
    __audit__ = AuditSpec(
        object_type="submission",
        event_prefix="Submission",
        fields=("site_id", "program_id", "global_submission_id", "created_by", "timezone", "fields", "notes"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    program_id: Mapped[str] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    global_submission_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Physical readings (temperature, humidity, ...). Uninterpreted here.
    fields: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    site: Mapped[Site] = relationship()


class ObservationMixin:
    """
    Columns shared by both observation kinds.

    site_id/program_id are denormalized copies of the submission's ancestry.
    A null image_url means the observation is still pending.
    """

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    @declared_attr
    def submission_id(cls) -> Mapped[str]:
        return mapped_column(ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True)

    @declared_attr
    def site_id(cls) -> Mapped[str]:
        return mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)

    @declared_attr
    def program_id(cls) -> Mapped[str]:
        return mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)

    @property
    def is_complete(self) -> bool:
        return self.image_url is not None


class PetriObservation(ObservationMixin, Base):
    __tablename__ = "petri_observations"
    __audit__ = AuditSpec(
        object_type="petri_observation",
        event_prefix="Petri",
        fields=(
            "submission_id",
            "site_id",
            "program_id",
            "code",
            "image_url",
            "plant_type",
            "fungicide_used",
            "placement",
            "notes",
        ),
    )

    plant_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fungicide_used: Mapped[str | None] = mapped_column(String(10), nullable=True)
    placement: Mapped[str | None] = mapped_column(String(50), nullable=True)


class GasifierObservation(ObservationMixin, Base):
    __tablename__ = "gasifier_observations"
    __audit__ = AuditSpec(
        object_type="gasifier_observation",
        event_prefix="Gasifier",
        fields=(
            "submission_id",
            "site_id",
            "program_id",
            "code",
            "image_url",
            "chemical_type",
            "measure",
            "anomaly",
            "placement_height",
            "notes",
        ),
    )

    chemical_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    measure: Mapped[float | None] = mapped_column(Float, nullable=True)
    anomaly: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    placement_height: Mapped[str | None] = mapped_column(String(20), nullable=True)


OBSERVATION_MODELS: dict[str, type[PetriObservation] | type[GasifierObservation]] = {
    "petri": PetriObservation,
    "gasifier": GasifierObservation,
}
