"""Navigation use cases wiring caches, fetchers, and the scene."""

from story_graph.application.graph_navigator import GraphNavigator, NavigationResult
from story_graph.application.settings import EngineSettings

__all__ = ["EngineSettings", "GraphNavigator", "NavigationResult"]
