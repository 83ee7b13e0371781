"""Skill runtimes."""

from nexflow.skills.runtime import LocalSkillRuntime, MockSkillRuntime

__all__ = ["LocalSkillRuntime", "MockSkillRuntime"]
