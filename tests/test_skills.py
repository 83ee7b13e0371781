from __future__ import annotations

import json
from pathlib import Path

import pytest

from nexflow.errors import SkillError
from nexflow.skills import LocalSkillRuntime, MockSkillRuntime


def _script(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.mark.asyncio
async def test_mock_runtime_registry() -> None:
    runtime = MockSkillRuntime()

    async def _greet(args: dict) -> str:
        return f"hello {args['name']}"

    runtime.register("greet", _greet, description="Say hello", parameters={"type": "object"})

    assert await runtime.list() == ["greet"]
    assert await runtime.get_skill("greet") == {
        "name": "greet",
        "description": "Say hello",
        "parameters": {"type": "object"},
    }
    result = await runtime.execute("greet", {"name": "ann"})
    assert (result.success, result.output) == (True, "hello ann")
    missing = await runtime.execute("nope", {})
    assert (missing.success, missing.error) == (False, "skill not found: nope")
    with pytest.raises(SkillError, match="skill not found"):
        await runtime.validate("nope")


@pytest.mark.asyncio
async def test_local_runtime_passes_input_as_environment(tmp_path: Path) -> None:
    _script(tmp_path, "greet", 'echo "hello $NEXFLOW_NAME $NEXFLOW_COUNT"')
    runtime = LocalSkillRuntime(tmp_path)

    result = await runtime.execute("greet", {"name": "ann", "count": 2})

    assert result.success is True
    assert result.output == "hello ann 2"


@pytest.mark.asyncio
async def test_local_runtime_reports_exit_status(tmp_path: Path) -> None:
    _script(tmp_path, "broken", "echo oops\nexit 3")
    runtime = LocalSkillRuntime(tmp_path)

    result = await runtime.execute("broken", {})

    assert result.success is False
    assert result.output == "oops"
    assert result.error == "execution failed: exit status 3"


@pytest.mark.asyncio
async def test_local_runtime_kills_slow_skill(tmp_path: Path) -> None:
    _script(tmp_path, "slow", "sleep 5")
    runtime = LocalSkillRuntime(tmp_path, timeout=0.2)

    result = await runtime.execute("slow", {})

    assert result.success is False
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_local_runtime_discovery_and_manifest(tmp_path: Path) -> None:
    _script(tmp_path, "weather", "echo sunny")
    _script(tmp_path, "echo", "echo $NEXFLOW_TEXT")
    (tmp_path / "weather.json").write_text(
        json.dumps({"description": "Current weather", "parameters": {"type": "object"}}), encoding="utf-8"
    )
    (tmp_path / "notes.txt").write_text("not a skill", encoding="utf-8")
    runtime = LocalSkillRuntime(tmp_path)

    assert await runtime.list() == ["echo", "weather"]
    info = await runtime.get_skill("weather")
    assert info["description"] == "Current weather"
    assert info["parameters"] == {"type": "object"}
    assert (await runtime.get_skill("echo"))["description"] == ""


@pytest.mark.asyncio
async def test_local_runtime_rejects_bad_names(tmp_path: Path) -> None:
    runtime = LocalSkillRuntime(tmp_path)

    with pytest.raises(SkillError, match="invalid skill name"):
        await runtime.validate("../etc/passwd")
    with pytest.raises(SkillError, match="skill not found"):
        await runtime.validate("missing")
    result = await runtime.execute(".hidden", {})
    assert result.success is False
    assert "invalid skill name" in result.error
