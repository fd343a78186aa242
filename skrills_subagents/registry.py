"""Agent registry for discovering agent definition files.

Agents are markdown files with optional YAML frontmatter found under the
standard agent directories. Lookup is case-insensitive by file stem.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

IGNORE_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv"})


@dataclass(frozen=True)
class AgentRoot:
    root: Path
    source: str


@dataclass
class AgentConfig:
    """Parsed agent definition."""

    name: str
    description: str = ""
    tools: list[str] | None = None
    model: str | None = None
    permission_mode: str | None = None
    skills: list[str] | None = None
    system_prompt: str = ""


@dataclass
class CachedAgent:
    name: str
    path: Path
    source: str
    config: AgentConfig = field(repr=False)

    def to_dict(self, requires_cli: bool) -> dict:
        return {
            "name": self.config.name,
            "description": self.config.description,
            "tools": self.config.tools or [],
            "model": self.config.model,
            "source": self.source,
            "path": str(self.path),
            "requires_cli": requires_cli,
        }


def agent_roots(home: Path) -> list[AgentRoot]:
    """Standard agent directories in priority order."""
    return [
        AgentRoot(home / ".codex" / "agents", "codex"),
        AgentRoot(home / ".claude" / "agents", "claude"),
        AgentRoot(home / ".agent" / "agents", "agent"),
    ]


def agent_name_key(name: str) -> str:
    """Normalize an agent name: lowercase, no directories, no ``.md`` suffix."""
    key = name.lower().replace("\\", "/").rsplit("/", 1)[-1]
    return key.removesuffix(".md")


def _parse_comma_list(value: object) -> list[str]:
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return [item.strip() for item in str(value).split(",") if item.strip()]


def split_frontmatter(content: str) -> tuple[str | None, str]:
    """Split ``---`` delimited YAML frontmatter from the markdown body."""
    lines = content.splitlines()
    if not lines or lines[0].strip() != "---":
        return None, content
    for i, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            return "\n".join(lines[1:i]), "\n".join(lines[i + 1 :]).strip()
    return None, content


def parse_agent_config(content: str, fallback_name: str) -> AgentConfig:
    """Parse an agent markdown file.

    Raises:
        ValueError: If the frontmatter is not valid YAML mapping
    """
    frontmatter, body = split_frontmatter(content)
    raw: dict = {}
    if frontmatter is not None:
        try:
            loaded = yaml.safe_load(frontmatter)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML frontmatter: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError("Invalid YAML frontmatter: expected a mapping")
        raw = loaded or {}

    tools = raw.get("tools")
    skills = raw.get("skills")
    return AgentConfig(
        name=str(raw.get("name") or fallback_name),
        description=str(raw.get("description") or ""),
        tools=_parse_comma_list(tools) if tools is not None else None,
        model=raw.get("model"),
        permission_mode=raw.get("permissionMode"),
        skills=_parse_comma_list(skills) if skills is not None else None,
        system_prompt=body,
    )


class AgentRegistry:
    """Discovered agents keyed by normalized name; the first root wins on duplicates."""

    def __init__(self, agents: dict[str, CachedAgent] | None = None) -> None:
        self._agents = agents or {}

    @classmethod
    def discover(cls) -> AgentRegistry:
        return cls.discover_from(Path.home())

    @classmethod
    def discover_from(cls, home: Path) -> AgentRegistry:
        return cls.discover_from_roots(agent_roots(home))

    @classmethod
    def discover_from_roots(cls, roots: list[AgentRoot]) -> AgentRegistry:
        agents: dict[str, CachedAgent] = {}
        for root in roots:
            if not root.root.is_dir():
                continue
            for path in sorted(root.root.rglob("*.md")):
                if not path.is_file() or any(part in IGNORE_DIRS for part in path.relative_to(root.root).parts):
                    continue
                name = path.relative_to(root.root).as_posix()
                key = agent_name_key(name)
                if key in agents:
                    logger.warning(
                        f"Skipping duplicate agent {name} at {path} ({root.source}), keeping higher priority version"
                    )
                    continue
                try:
                    config = parse_agent_config(path.read_text(encoding="utf-8"), path.stem)
                except (OSError, UnicodeDecodeError, ValueError) as e:
                    logger.warning(f"Failed to parse agent config {path}, skipping: {e}")
                    continue
                agents[key] = CachedAgent(name=name, path=path, source=root.source, config=config)
        logger.info(f"Discovered {len(agents)} agents")
        return cls(agents)

    def get(self, name: str) -> CachedAgent | None:
        return self._agents.get(agent_name_key(name))

    def list(self) -> list[CachedAgent]:
        return sorted(self._agents.values(), key=lambda agent: agent_name_key(agent.name))

    def requires_cli(self, name: str) -> bool:
        """True when the agent declares a non-empty tools list."""
        agent = self.get(name)
        return bool(agent and agent.config.tools)

    def __len__(self) -> int:
        return len(self._agents)
