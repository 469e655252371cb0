"""
Configuration for the lead qualification engine.
"""

from .settings import Settings, get_settings
from .agent_config import AgentConfig, default_agent_config, load_agent_config

__all__ = ["Settings", "get_settings", "AgentConfig", "default_agent_config", "load_agent_config"]
