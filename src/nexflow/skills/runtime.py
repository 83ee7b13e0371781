"""Skill runtimes: an in-process registry and a directory of local executables."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from nexflow.errors import SkillError
from nexflow.orchestrator.ports import SkillExecution

SkillFunc = Callable[[dict[str, Any]], Awaitable[str]]

ENV_PREFIX = "NEXFLOW_"


@dataclass
class _RegisteredSkill:
    func: SkillFunc
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


class MockSkillRuntime:
    """Skills backed by async callables registered in-process."""

    def __init__(self) -> None:
        self._skills: dict[str, _RegisteredSkill] = {}

    def register(
        self,
        name: str,
        func: SkillFunc,
        *,
        description: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self._skills[name] = _RegisteredSkill(func, description, dict(parameters or {}))

    async def execute(self, skill_name: str, input: dict[str, Any]) -> SkillExecution:  # noqa: A002
        skill = self._skills.get(skill_name)
        if skill is None:
            return SkillExecution(success=False, error=f"skill not found: {skill_name}")
        try:
            output = await skill.func(input)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return SkillExecution(success=False, error=str(exc))
        return SkillExecution(success=True, output=output)

    async def validate(self, skill_name: str) -> None:
        if skill_name not in self._skills:
            raise SkillError(f"skill not found: {skill_name}")

    async def list(self) -> list[str]:
        return sorted(self._skills)

    async def get_skill(self, name: str) -> dict[str, Any]:
        await self.validate(name)
        skill = self._skills[name]
        return {"name": name, "description": skill.description, "parameters": skill.parameters}


class LocalSkillRuntime:
    """Run executables from a directory.

    Each input key is passed as a ``NEXFLOW_<KEY>`` environment variable; the
    combined stdout/stderr is the skill output. An optional ``<name>.json``
    sidecar supplies ``description`` and ``parameters``.
    """

    def __init__(self, directory: Path, *, timeout: float = 30.0) -> None:
        self._directory = directory.expanduser().resolve()
        self._timeout = timeout
        self._directory.mkdir(parents=True, exist_ok=True)

    async def execute(self, skill_name: str, input: dict[str, Any]) -> SkillExecution:  # noqa: A002
        try:
            path = self._skill_path(skill_name)
        except SkillError as exc:
            return SkillExecution(success=False, error=str(exc))

        logger.debug("skills.local.execute skill={} input_keys={}", skill_name, sorted(input))
        process = await asyncio.create_subprocess_exec(
            str(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=_skill_env(input),
            cwd=str(self._directory),
        )
        try:
            raw, _ = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("skills.local.timeout skill={} timeout={}", skill_name, self._timeout)
            return SkillExecution(success=False, error=f"skill timed out after {self._timeout:g}s")
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        output = raw.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            logger.warning("skills.local.failed skill={} exit_code={}", skill_name, process.returncode)
            return SkillExecution(
                success=False, output=output, error=f"execution failed: exit status {process.returncode}"
            )
        return SkillExecution(success=True, output=output)

    async def validate(self, skill_name: str) -> None:
        self._skill_path(skill_name)

    async def list(self) -> list[str]:
        return sorted(p.name for p in self._directory.iterdir() if _is_executable(p))

    async def get_skill(self, name: str) -> dict[str, Any]:
        path = self._skill_path(name)
        info: dict[str, Any] = {"name": name, "path": str(path), "description": "", "parameters": {}}
        sidecar = path.with_name(f"{name}.json")
        if sidecar.is_file():
            try:
                data = json.loads(sidecar.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise SkillError(f"invalid skill manifest {sidecar.name}: {exc}") from exc
            info["description"] = data.get("description", "")
            info["parameters"] = data.get("parameters", {})
        return info

    def _skill_path(self, skill_name: str) -> Path:
        if not skill_name or "/" in skill_name or "\\" in skill_name or skill_name.startswith("."):
            raise SkillError(f"invalid skill name: {skill_name!r}")
        path = self._directory / skill_name
        if not _is_executable(path):
            raise SkillError(f"skill not found: {skill_name}")
        return path


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _skill_env(input: dict[str, Any]) -> dict[str, str]:  # noqa: A002
    env = {"PATH": os.environ.get("PATH", "")}
    for key, value in input.items():
        env[f"{ENV_PREFIX}{key.upper()}"] = value if isinstance(value, str) else json.dumps(value, default=str)
    return env
