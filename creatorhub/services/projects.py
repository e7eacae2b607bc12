from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import atomic
from ..exceptions import NotFoundError, ProjectAccessDenied, ValidationFailedError
from ..models import Project, User
from ..schemas import ProjectIn, ProjectUpdate

TIER2_TIERS = ("tier2", "admin")


def get_project_by_slug(db: Session, slug: str) -> Project:
    project = db.execute(select(Project).where(Project.slug == slug)).scalar_one_or_none()
    if project is None:
        raise NotFoundError("project", f"Project '{slug}' not found")
    return project


def ensure_project_access(project: Project, user: User) -> None:
    if not project.is_active or project.coming_soon:
        raise ProjectAccessDenied(project.slug, "Project is not available yet")
    if project.requires_tier2 and user.subscription_tier not in TIER2_TIERS:
        raise ProjectAccessDenied(project.slug, "This project requires the Pro plan")


def resolve_project(db: Session, slug: Optional[str], user: User) -> Optional[Project]:
    if not slug:
        return None
    project = get_project_by_slug(db, slug)
    ensure_project_access(project, user)
    return project


def list_projects(db: Session) -> List[Project]:
    return list(db.execute(select(Project).order_by(Project.name)).scalars())


def create_project(db: Session, payload: ProjectIn) -> Project:
    project = Project(**payload.model_dump())
    try:
        with atomic(db):
            db.add(project)
    except IntegrityError:
        raise ValidationFailedError(f"Project slug '{payload.slug}' already exists", field="slug")
    return project


def update_project(db: Session, slug: str, payload: ProjectUpdate) -> Project:
    project = get_project_by_slug(db, slug)
    with atomic(db):
        for key, value in payload.model_dump(exclude_unset=True).items():
            setattr(project, key, value)
    return project
