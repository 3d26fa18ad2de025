"""Protocol interfaces for the consumers of cached repositories.

The cache only prepares a local clone; answering questions about it is left to
an executor implementing QuestionExecutor.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

from repocache.models import SingleRepositoryStats


@dataclass
class ExecutorAnswer:
    """Answer produced by an executor."""

    answer: str
    model: str
    execution_time: float
    tokens_used: Optional[int] = None


class QuestionExecutor(Protocol):
    """Minimal interface of a question executor working on a local clone."""

    def ask(
        self,
        repository_path: Union[str, Path],
        question: str,
        stats: Optional[SingleRepositoryStats] = None,
        timeout: Optional[float] = None,
    ) -> ExecutorAnswer:
        """Answer ``question`` about the repository checked out at ``repository_path``.

        ``stats`` lets the executor pick a strategy by repository size;
        ``timeout`` is in seconds.
        """
        ...
