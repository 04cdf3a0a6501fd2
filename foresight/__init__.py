"""MindHome Foresight - Pattern Engine und Scenario Engine"""
from .event_bus import EventBus
from .pattern_engine import PatternEngine
from .scenario_engine import ScenarioEngine

__version__ = "1.0.0"

__all__ = [
    "EventBus",
    "PatternEngine",
    "ScenarioEngine",
]
