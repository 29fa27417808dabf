from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class PetriTemplate(BaseModel):
    """Pre-population entry for one pending petri observation."""

    model_config = ConfigDict(extra="forbid")

    code: str | None = None
    plant_type: str | None = None
    fungicide_used: str | None = None
    placement: str | None = None
    notes: str | None = None


class GasifierTemplate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str | None = None
    chemical_type: str | None = None
    placement_height: str | None = None
    notes: str | None = None


class PetriObservationIn(PetriTemplate):
    image_url: str | None = None


class GasifierObservationIn(GasifierTemplate):
    image_url: str | None = None
    measure: float | None = None
    anomaly: bool = False


class PetriObservationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str | None = None
    plant_type: str | None = None
    fungicide_used: str | None = None
    placement: str | None = None
    notes: str | None = None
    image_url: str | None = None


class GasifierObservationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str | None = None
    chemical_type: str | None = None
    placement_height: str | None = None
    measure: float | None = None
    anomaly: bool | None = None
    notes: str | None = None
    image_url: str | None = None


OBSERVATION_INPUTS: dict[str, type[BaseModel]] = {
    "petri": PetriObservationIn,
    "gasifier": GasifierObservationIn,
}
OBSERVATION_UPDATES: dict[str, type[BaseModel]] = {
    "petri": PetriObservationUpdate,
    "gasifier": GasifierObservationUpdate,
}


def parse_templates(model: type[BaseModel], raw: Any, kind: str) -> list[BaseModel]:
    """
    Parse a template list; anything malformed degrades to "no templates"
    (logged at WARNING).
    """

    if not raw:
        return []
    try:
        return TypeAdapter(list[model]).validate_python(raw)
    except PydanticValidationError as exc:
        logger.warning("Ignoring malformed %s templates (%d error(s))", kind, exc.error_count())
        return []


class ObservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    submission_id: str
    site_id: str
    program_id: str
    code: str | None
    image_url: str | None
    notes: str | None
    is_complete: bool
    last_updated_by: str | None
    updated_at: datetime


class PetriObservationOut(ObservationOut):
    plant_type: str | None
    fungicide_used: str | None
    placement: str | None


class GasifierObservationOut(ObservationOut):
    chemical_type: str | None
    measure: float | None
    anomaly: bool
    placement_height: str | None


OBSERVATION_OUTPUTS: dict[str, type[ObservationOut]] = {
    "petri": PetriObservationOut,
    "gasifier": GasifierObservationOut,
}


class ObservationCompleteIn(BaseModel):
    image_url: str


class ProgramCreateIn(BaseModel):
    name: str
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    company_id: str | None = None


class ProgramOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    company_id: str | None
    status: str
    start_date: date | None
    end_date: date | None
    total_sites: int
    total_submissions: int


class SiteTemplateDefaultsIn(BaseModel):
    submission_defaults: dict[str, Any] | None = None
    # Checked by the service so a bad entry comes back as a validation_error.
    petri_defaults: Any = None
    gasifier_defaults: Any = None


class SiteCreateIn(SiteTemplateDefaultsIn):
    name: str
    site_type: str | None = None
    timezone: str | None = None


class SiteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    program_id: str
    name: str
    site_type: str | None
    timezone: str | None
    submission_defaults: dict[str, Any] | None
    petri_defaults: list[dict[str, Any]] | None
    gasifier_defaults: list[dict[str, Any]] | None
