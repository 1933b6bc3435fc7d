import logging
from uuid import UUID

from fastapi import APIRouter, status
from sqlalchemy import select

from rhyme_studio.api.deps import DbSession, get_character_or_404, get_project_or_404
from rhyme_studio.models.character import Character
from rhyme_studio.models.project import Project
from rhyme_studio.schemas.project import (
    CharacterCreate,
    CharacterResponse,
    CharacterUpdate,
    CostLogResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
)
from rhyme_studio.services.cost_ledger import CostLedger

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[ProjectResponse])
async def list_projects(db: DbSession) -> list[ProjectResponse]:
    result = await db.execute(select(Project).order_by(Project.updated_at.desc()))
    return [ProjectResponse.model_validate(p) for p in result.scalars().all()]


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(project_data: ProjectCreate, db: DbSession) -> ProjectResponse:
    project = Project(**project_data.model_dump())
    db.add(project)
    await db.commit()
    await db.refresh(project)
    logger.info(f"Created project {project.id}")
    return ProjectResponse.model_validate(project)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: UUID, db: DbSession) -> ProjectResponse:
    project = await get_project_or_404(project_id, db)
    await db.refresh(project)
    return ProjectResponse.model_validate(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: UUID,
    project_data: ProjectUpdate,
    db: DbSession,
) -> ProjectResponse:
    project = await get_project_or_404(project_id, db)
    changes = project_data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(project, field, value)
    await db.commit()
    await db.refresh(project)
    return ProjectResponse.model_validate(project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: UUID, db: DbSession) -> None:
    project = await get_project_or_404(project_id, db)
    await db.delete(project)
    await db.commit()
    logger.info(f"Deleted project {project_id}")


# =============================================================================
# Characters
# =============================================================================


@router.get("/{project_id}/characters", response_model=list[CharacterResponse])
async def list_characters(project_id: UUID, db: DbSession) -> list[CharacterResponse]:
    await get_project_or_404(project_id, db)
    result = await db.execute(
        select(Character).where(Character.project_id == project_id).order_by(Character.created_at)
    )
    return [CharacterResponse.model_validate(c) for c in result.scalars().all()]


@router.post(
    "/{project_id}/characters",
    response_model=CharacterResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_character(
    project_id: UUID,
    character_data: CharacterCreate,
    db: DbSession,
) -> CharacterResponse:
    await get_project_or_404(project_id, db)
    character = Character(project_id=project_id, **character_data.model_dump())
    db.add(character)
    await db.commit()
    await db.refresh(character)
    return CharacterResponse.model_validate(character)


@router.patch("/{project_id}/characters/{character_id}", response_model=CharacterResponse)
async def update_character(
    project_id: UUID,
    character_id: UUID,
    character_data: CharacterUpdate,
    db: DbSession,
) -> CharacterResponse:
    """Edit a character, e.g. to pick one of its generated images as primary."""
    character = await get_character_or_404(project_id, character_id, db)
    for field, value in character_data.model_dump(exclude_unset=True).items():
        setattr(character, field, value)
    await db.commit()
    await db.refresh(character)
    return CharacterResponse.model_validate(character)


@router.delete("/{project_id}/characters/{character_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_character(project_id: UUID, character_id: UUID, db: DbSession) -> None:
    character = await get_character_or_404(project_id, character_id, db)
    await db.delete(character)
    await db.commit()


# =============================================================================
# Costs
# =============================================================================


@router.get("/{project_id}/costs", response_model=list[CostLogResponse])
async def list_costs(project_id: UUID, db: DbSession) -> list[CostLogResponse]:
    """Cost ledger entries for a project, newest first."""
    await get_project_or_404(project_id, db)
    entries = await CostLedger(db).list_for_project(project_id)
    return [CostLogResponse.model_validate(e) for e in entries]
