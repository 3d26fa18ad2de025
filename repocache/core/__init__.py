"""Core interfaces and abstractions for repocache."""

from repocache.core.interfaces import ExecutorAnswer, QuestionExecutor

__all__ = ["ExecutorAnswer", "QuestionExecutor"]
