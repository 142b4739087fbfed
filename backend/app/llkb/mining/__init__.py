"""
Mining Engine

Bounded, regex-based extraction of UI elements and passive signals from a
project's source tree.
"""

from .cache import MiningCache, ScannedFile, SOURCE_DIRECTORIES, scan_all_source_directories, scan_directory
from .elements import (
    Entity, Route, Form, FormField, Table, Modal,
    MinedElements, MiningResult, extract_elements, mine_elements,
)
from .i18n import I18nMiningResult, mine_i18n_keys, generate_i18n_patterns
from .analytics_events import AnalyticsMiningResult, mine_analytics_events, generate_analytics_patterns
from .feature_flags import FeatureFlagMiningResult, mine_feature_flags, generate_feature_flag_patterns

__all__ = [
    "MiningCache",
    "ScannedFile",
    "SOURCE_DIRECTORIES",
    "scan_all_source_directories",
    "scan_directory",
    "Entity",
    "Route",
    "Form",
    "FormField",
    "Table",
    "Modal",
    "MinedElements",
    "MiningResult",
    "extract_elements",
    "mine_elements",
    "I18nMiningResult",
    "mine_i18n_keys",
    "generate_i18n_patterns",
    "AnalyticsMiningResult",
    "mine_analytics_events",
    "generate_analytics_patterns",
    "FeatureFlagMiningResult",
    "mine_feature_flags",
    "generate_feature_flag_patterns",
]
