"""
Workspace-side models resolved through external collaborators.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class AgentSettings:
    """Agent feature flags stored in workspace settings."""
    enabled: bool = True
    enable_memory_insights: bool = True
    enable_activity_tracking: bool = True


def resolve_agent_settings(settings: Optional[Dict[str, Any]]) -> AgentSettings:
    """Resolve agent settings from a workspace settings document.

    Flags live under settings['agent'] in camelCase; missing flags keep their
    defaults.
    """
    agent = (settings or {}).get('agent') if isinstance(settings, dict) else None
    if not isinstance(agent, dict):
        return AgentSettings()

    defaults = AgentSettings()

    def flag(key: str, default: bool) -> bool:
        value = agent.get(key)
        return value if isinstance(value, bool) else default

    return AgentSettings(enabled=flag('enabled', defaults.enabled),
                         enable_memory_insights=flag('enableMemoryInsights', defaults.enable_memory_insights),
                         enable_activity_tracking=flag('enableActivityTracking', defaults.enable_activity_tracking))


@dataclass
class Workspace:
    id: str
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Space:
    id: str
    name: str
    workspace_id: str
    settings: Dict[str, Any] = field(default_factory=dict)  # Workspace settings in effect for the space


@dataclass
class User:
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id

    @property
    def tracks_activity(self) -> bool:
        """False only when the user explicitly opted out of activity tracking."""
        preferences = self.settings.get('preferences') if isinstance(self.settings, dict) else None
        if isinstance(preferences, dict) and preferences.get('enableActivityTracking') is False:
            return False
        return True


@dataclass
class ActivitySession:
    """A span of UI activity reported by a client."""
    space_id: Optional[str]
    duration_ms: int
    ended_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    page_id: Optional[str] = None
    project_id: Optional[str] = None
    title: Optional[str] = None
    route: Optional[str] = None
