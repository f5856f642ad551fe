"""
PPMatch - Project Context Provider
==================================

Supplies the solicitation text for a project-context search. The project
and its documents belong to the document-management collaborator; this
module only reads them.

The requirements text is the first project document that mentions
"past performance", else all documents joined.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from ppmatch.shared.exceptions import ProjectContextNotFoundError, ServiceUnavailableError

logger = logging.getLogger(__name__)

REQUIREMENTS_MARKER = "past performance"


@dataclass
class ProjectContext:
    project_id: str
    name: str = ""
    documents: List[str] = field(default_factory=list)

    @property
    def requirements_text(self) -> str:
        for content in self.documents:
            if content and REQUIREMENTS_MARKER in content.lower():
                return content
        return "\n\n".join(d for d in self.documents if d)


class ProjectContextProvider(ABC):
    """Abstract source of project documents."""

    @abstractmethod
    async def get_context(self, project_id: str) -> ProjectContext:
        """
        Raises:
            ProjectContextNotFoundError: unknown project or no documents
        """
        pass

    async def close(self) -> None:
        pass


class InMemoryProjectContextProvider(ProjectContextProvider):
    """Projects registered in process; used by tests and single-node setups."""

    def __init__(self):
        self._projects: Dict[str, ProjectContext] = {}

    def register(self, project_id: str, documents: List[str], name: str = "") -> ProjectContext:
        context = ProjectContext(project_id=project_id, name=name, documents=list(documents))
        self._projects[project_id] = context
        return context

    async def get_context(self, project_id: str) -> ProjectContext:
        context = self._projects.get(project_id)
        if context is None or not context.requirements_text.strip():
            raise ProjectContextNotFoundError(f"Project not found: {project_id}")
        return context


class HttpProjectContextProvider(ProjectContextProvider):
    """
    Reads `GET {base_url}/projects/{project_id}/documents`:

        {"name": "...", "documents": [{"content": "..."}, ...]}
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0),
        )

    async def get_context(self, project_id: str) -> ProjectContext:
        url = f"{self.base_url}/projects/{project_id}/documents"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.error(f"Project context request failed for {project_id}: {e}")
            raise ServiceUnavailableError(f"Project service unavailable: {e}") from e

        if response.status_code == 404:
            raise ProjectContextNotFoundError(f"Project not found: {project_id}")
        if response.status_code >= 400:
            raise ServiceUnavailableError(
                f"Project service returned {response.status_code} for {project_id}"
            )

        payload = response.json()
        context = ProjectContext(
            project_id=project_id,
            name=payload.get("name", ""),
            documents=[d.get("content") or "" for d in payload.get("documents", [])],
        )
        if not context.requirements_text.strip():
            raise ProjectContextNotFoundError(f"Project {project_id} has no document text")
        return context

    async def close(self) -> None:
        await self._client.aclose()
