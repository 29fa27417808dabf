"""
Repair jobs for denormalized data.

Both functions only stage changes on `db`; the caller owns the transaction
(`unit_of_work(db, None)` for system runs, or the surrounding request's unit
of work).
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.field import GasifierObservation, PetriObservation, Program, Site, Submission

logger = logging.getLogger(__name__)


def recompute_program_counters(db: Session, program_ids: list[str] | None = None) -> int:
    """Reset total_sites/total_submissions from live rows. Returns how many programs changed."""
    site_counts = select(Site.program_id, func.count(Site.id)).group_by(Site.program_id)
    submission_counts = select(Submission.program_id, func.count(Submission.id)).group_by(Submission.program_id)
    programs = select(Program)
    if program_ids is not None:
        site_counts = site_counts.where(Site.program_id.in_(program_ids))
        submission_counts = submission_counts.where(Submission.program_id.in_(program_ids))
        programs = programs.where(Program.id.in_(program_ids))

    sites = dict(db.execute(site_counts).all())
    submissions = dict(db.execute(submission_counts).all())

    changed = 0
    for program in db.scalars(programs):
        total_sites = sites.get(program.id, 0)
        total_submissions = submissions.get(program.id, 0)
        if program.total_sites != total_sites or program.total_submissions != total_submissions:
            program.total_sites = total_sites
            program.total_submissions = total_submissions
            changed += 1

    if changed:
        logger.info("Recomputed roll-up counters for %d program(s)", changed)
    return changed


def repair_observation_ancestry(db: Session) -> int:
    """Copy site_id/program_id from each observation's submission where they drifted."""
    repaired = 0
    for model in (PetriObservation, GasifierObservation):
        rows = db.execute(
            select(model, Submission.site_id, Submission.program_id)
            .join(Submission, Submission.id == model.submission_id)
            .where((model.site_id != Submission.site_id) | (model.program_id != Submission.program_id))
        ).all()
        for observation, site_id, program_id in rows:
            observation.site_id = site_id
            observation.program_id = program_id
            repaired += 1

    if repaired:
        logger.warning("Repaired ancestry of %d observation(s)", repaired)
    return repaired
