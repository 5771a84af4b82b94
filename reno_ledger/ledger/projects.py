"""
Project Management

Projects carry budget configuration only; spend is always derived from
allocations. A project that still owns allocations cannot be deleted,
otherwise money would silently drop out of every dashboard total.
"""

from typing import Optional

from reno_ledger.errors import ProjectInUseError
from reno_ledger.models.ledger import Project, ProjectStatus, ValidationIssue
from reno_ledger.services.storage.interface import (
    LedgerStorageInterface,
    ProjectNotFoundError,
)


class ProjectService:

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def create_project(self, project: Project) -> Project:
        return await self._storage.create_project(project)

    async def get_project(self, project_id: int) -> Project:
        project = await self._storage.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project not found: {project_id}")
        return project

    async def list_projects(
        self,
        status: Optional[ProjectStatus] = None,
    ) -> list[Project]:
        return await self._storage.list_projects(status)

    async def update_project(self, project: Project) -> Project:
        return await self._storage.update_project(project)

    async def delete_project(self, project_id: int) -> None:
        """
        Raises:
            ProjectNotFoundError: Unknown project
            ProjectInUseError: The project still owns allocations
        """
        await self.get_project(project_id)
        in_use = await self._storage.count_allocations_for_project(project_id)
        if in_use:
            issue = ValidationIssue(
                field="project_id",
                issue_type="project_in_use",
                message=f"Project {project_id} still has {in_use} allocation(s)",
                severity="error",
                suggested_fix="Reassign its transactions first",
            )
            raise ProjectInUseError(issue.message, issues=[issue])
        await self._storage.delete_project(project_id)
