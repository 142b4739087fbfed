"""
Pattern Generation

Template expansion, discovery-derived seeds, framework packs and the quality
controls applied before patterns are persisted.
"""

from .templates import GenerationResult, PatternTemplate, generate_all_patterns
from .generation import (
    generate_patterns,
    merge_discovered_patterns,
    create_discovered_patterns_file,
    save_discovered_patterns,
    load_discovered_patterns,
)
from .packs import FrameworkPack, load_packs_for_frameworks, load_discovered_patterns_for_frameworks
from .quality import QualityControlResult, UsageStats, PatternUsage, apply_all_quality_controls

__all__ = [
    "GenerationResult",
    "PatternTemplate",
    "generate_all_patterns",
    "generate_patterns",
    "merge_discovered_patterns",
    "create_discovered_patterns_file",
    "save_discovered_patterns",
    "load_discovered_patterns",
    "FrameworkPack",
    "load_packs_for_frameworks",
    "load_discovered_patterns_for_frameworks",
    "QualityControlResult",
    "UsageStats",
    "PatternUsage",
    "apply_all_quality_controls",
]
