"""Boundary between the executor and whatever actually runs an agent."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional, Sequence, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class BackendResult(BaseModel):
    """Outcome of one agent run as reported by the backend."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool
    files_modified: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("files_modified", "filesModified"),
    )
    output: str = ""
    errors: list[str] = Field(default_factory=list)


@dataclass
class ExecutionProgress:
    """Progress checkpoint emitted while a task executes."""

    task_id: str
    progress: int
    status: str
    current_step: Optional[str] = None
    output: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


ProgressCallback = Callable[[ExecutionProgress], None]


class AgentBackend(ABC):
    """Runs agents on behalf of the executor.

    ``create_task`` turns a board task into whatever descriptor the backend
    understands; ``execute_chain`` runs the descriptors and returns one result
    per descriptor, in order.  Results may be :class:`BackendResult` instances
    or plain mappings (camelCase or snake_case keys).
    """

    @abstractmethod
    def create_task(self, title: str, description: str, priority: str, role: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def execute_chain(self, descriptors: Sequence[Any]) -> list[Union[BackendResult, dict[str, Any]]]:
        raise NotImplementedError
