from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.audit import unit_of_work
from app.db.session import get_db
from app.schemas.session import SweepOut
from app.security.dependencies import require_super_admin
from app.services.maintenance import recompute_program_counters, repair_observation_ancestry
from app.services.sessions import sweep_expired_sessions

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_super_admin)])


@router.post("/sessions/sweep", response_model=SweepOut)
def sweep(db: Session = Depends(get_db)) -> dict[str, int]:
    return sweep_expired_sessions(db)


@router.post("/maintenance/recompute-counters")
def recompute_counters(db: Session = Depends(get_db)) -> dict[str, int]:
    with unit_of_work(db, None):
        changed = recompute_program_counters(db)
    return {"programs_changed": changed}


@router.post("/maintenance/repair-ancestry")
def repair_ancestry(db: Session = Depends(get_db)) -> dict[str, int]:
    with unit_of_work(db, None):
        repaired = repair_observation_ancestry(db)
    return {"observations_repaired": repaired}
