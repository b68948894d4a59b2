from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AgentResult:
    outcome: str | None
    task_name: str | None


class AgentAdapter(ABC):
    @abstractmethod
    def install(self) -> None:
        """Install the agent binary (pinned version when configured)."""

    @abstractmethod
    def run_task(self, *, prompt: str, cwd: Path) -> AgentResult:
        """Run one task to completion in ``cwd`` and return its parsed result."""
