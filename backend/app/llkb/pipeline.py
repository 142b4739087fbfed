"""
Discovery Pipeline

One run takes a project root to a persisted discovered-patterns.json and
discovered-profile.json:

1. Discovery          - frameworks, UI libraries, selector signals, auth hints
2. Profile patterns   - auth/navigation/UI-library seeds      (strong)
3. Element mining     - entities, routes, forms, tables, modals + templates (medium)
4. Framework packs    - static patterns for the detected stack (medium)
5. Passive miners     - i18n keys, analytics events, feature flags (weak)
6. Quality controls   - boost, dedup, threshold, signal weighting
7. Safety cap         - keep the top MAX_PIPELINE_PATTERNS by confidence
8. Persistence

Stages 2-6 degrade to a warning when they fail. Discovery and persistence
failures are errors and make the run unsuccessful.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import LLKBConfig, load_llkb_config, resolve_llkb_root
from .discovery import run_discovery, save_discovered_profile
from .mining import (
    MiningCache,
    generate_analytics_patterns,
    generate_feature_flag_patterns,
    generate_i18n_patterns,
    mine_analytics_events,
    mine_elements,
    mine_feature_flags,
    mine_i18n_keys,
)
from .mining.cache import DEFAULT_MAX_DEPTH, DEFAULT_MAX_FILES
from .models import DiscoveredPattern, DiscoveredPatternsFile, DiscoveredProfile
from .patterns import (
    QualityControlResult,
    apply_all_quality_controls,
    create_discovered_patterns_file,
    generate_all_patterns,
    generate_patterns,
    load_discovered_patterns_for_frameworks,
    save_discovered_patterns,
)

logger = logging.getLogger(__name__)

MAX_PIPELINE_PATTERNS = 2000
# Below this a typical project is under-covered; reported as a warning only
PATTERN_COVERAGE_TARGET = 360

PATTERN_SOURCES = ("discovery", "templates", "framework_packs", "i18n", "analytics", "feature_flags")


@dataclass
class PipelineOptions:
    # None means extraction.confidenceThreshold from config.yml
    confidence_threshold: Optional[float] = None
    max_depth: int = DEFAULT_MAX_DEPTH
    max_files: int = DEFAULT_MAX_FILES
    max_patterns: int = MAX_PIPELINE_PATTERNS
    skip_packs: bool = False
    skip_mining_modules: bool = False
    # Defaults to the store root
    output_dir: Optional[Path] = None
    # A caller-owned cache is reused and left populated
    cache: Optional[MiningCache] = None


@dataclass
class RunContext:
    """Per-run state. Created by run_full_discovery_pipeline and dropped when it returns."""
    project_root: Path
    llkb_root: Path
    config: LLKBConfig
    cache: MiningCache
    owns_cache: bool
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    # pattern id -> strong | medium | weak
    signal_strengths: Dict[str, str] = field(default_factory=dict)
    started: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def fail(self, message: str) -> None:
        logger.error(message)
        self.errors.append(message)

    def tag(self, patterns: List[DiscoveredPattern], strength: str) -> None:
        for pattern in patterns:
            self.signal_strengths[pattern.id] = strength


@dataclass
class PipelineStats:
    duration_ms: int = 0
    pattern_sources: Dict[str, int] = field(default_factory=lambda: {s: 0 for s in PATTERN_SOURCES})
    total_before_qc: int = 0
    total_after_qc: int = 0
    quality_controls: Optional[QualityControlResult] = None
    mining: Optional[Dict[str, int]] = None


@dataclass
class PipelineResult:
    success: bool
    profile: Optional[DiscoveredProfile] = None
    patterns_file: Optional[DiscoveredPatternsFile] = None
    stats: PipelineStats = field(default_factory=PipelineStats)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def patterns(self) -> List[DiscoveredPattern]:
        return self.patterns_file.patterns if self.patterns_file else []


def create_run_context(project_root, llkb_root=None, options: Optional[PipelineOptions] = None) -> RunContext:
    options = options or PipelineOptions()
    root = resolve_llkb_root(llkb_root)
    return RunContext(
        project_root=Path(project_root),
        llkb_root=root,
        config=load_llkb_config(root),
        cache=options.cache or MiningCache(),
        owns_cache=options.cache is None,
    )


# ==================== Stages ====================

async def _discover(ctx: RunContext) -> Optional[DiscoveredProfile]:
    try:
        result = await asyncio.to_thread(run_discovery, ctx.project_root, ctx.cache)
    except Exception as e:
        ctx.fail(f"Discovery failed: {e}")
        return None

    ctx.warnings.extend(result.warnings)
    if not result.success:
        for error in result.errors:
            ctx.fail(error)
    return result.profile


async def _mine_templates(ctx: RunContext, options: PipelineOptions, stats: PipelineStats) -> List[DiscoveredPattern]:
    try:
        mining = await mine_elements(ctx.project_root, options.max_depth, options.max_files, ctx.cache)
        generated = generate_all_patterns(mining.elements)
    except Exception as e:
        ctx.warn(f"Mining/template generation failed: {e}")
        return []

    stats.mining = {
        key: mining.stats.get(key, 0)
        for key in ("entities_found", "routes_found", "forms_found", "tables_found", "modals_found", "files_scanned")
    }
    # Templates come from regex mining, so they only earn the medium tier
    ctx.tag(generated.patterns, "medium")
    return generated.patterns


async def _load_packs(ctx: RunContext, profile: DiscoveredProfile) -> List[DiscoveredPattern]:
    names = [f.name for f in profile.frameworks] + [u.name for u in profile.ui_libraries]
    if not names:
        return []
    try:
        patterns = await asyncio.to_thread(load_discovered_patterns_for_frameworks, names)
    except Exception as e:
        ctx.warn(f"Framework pack loading failed: {e}")
        return []
    ctx.tag(patterns, "medium")
    return patterns


async def _mine_passive_signals(ctx: RunContext, stats: PipelineStats) -> List[DiscoveredPattern]:
    collected: List[DiscoveredPattern] = []
    miners = [
        ("i18n", "i18n mining failed", mine_i18n_keys, generate_i18n_patterns, "keys"),
        ("analytics", "Analytics mining failed", mine_analytics_events, generate_analytics_patterns, "events"),
        ("feature_flags", "Feature flag mining failed", mine_feature_flags, generate_feature_flag_patterns, "flags"),
    ]
    for source, failure, mine, generate, found_attr in miners:
        try:
            mined = await mine(ctx.project_root, ctx.cache)
            if not getattr(mined, found_attr):
                continue
            patterns = generate(mined)
        except Exception as e:
            ctx.warn(f"{failure}: {e}")
            continue
        ctx.tag(patterns, "weak")
        stats.pattern_sources[source] = len(patterns)
        collected.extend(patterns)
    return collected


async def _apply_quality_controls(
    ctx: RunContext,
    patterns: List[DiscoveredPattern],
    threshold: float,
    stats: PipelineStats,
) -> List[DiscoveredPattern]:
    try:
        validated, qc = await asyncio.to_thread(
            apply_all_quality_controls,
            patterns,
            threshold=threshold,
            signal_strengths=ctx.signal_strengths or None,
        )
    except Exception as e:
        ctx.warn(f"Quality controls failed, using unvalidated patterns: {e}")
        return list(patterns)
    stats.quality_controls = qc
    return validated


async def _persist(
    ctx: RunContext,
    profile: DiscoveredProfile,
    patterns: List[DiscoveredPattern],
    output_dir: Path,
) -> Optional[DiscoveredPatternsFile]:
    def write() -> DiscoveredPatternsFile:
        patterns_file = create_discovered_patterns_file(patterns, profile, ctx.elapsed_ms())
        save_discovered_patterns(patterns_file, output_dir)
        save_discovered_profile(profile, output_dir)
        return patterns_file

    try:
        return await asyncio.to_thread(write)
    except Exception as e:
        ctx.fail(f"Persistence failed: {e}")
        return None


# ==================== Pipeline ====================

async def run_full_discovery_pipeline(
    project_root,
    llkb_root=None,
    options: Optional[PipelineOptions] = None,
) -> PipelineResult:
    """
    Run discovery, mining, generation and quality controls, then persist.

    Args:
        project_root: Root of the application under test
        llkb_root: Store root; also the output directory unless
            options.output_dir is set
        options: Stage switches and limits

    Returns:
        PipelineResult; success is False when discovery or persistence failed
    """
    options = options or PipelineOptions()
    ctx = create_run_context(project_root, llkb_root, options)
    stats = PipelineStats()
    threshold = (
        options.confidence_threshold
        if options.confidence_threshold is not None
        else ctx.config.extraction.confidence_threshold
    )
    logger.info(f"Discovery pipeline started for {ctx.project_root}")

    all_patterns: List[DiscoveredPattern] = []
    profile = None
    try:
        profile = await _discover(ctx)

        if profile is not None:
            try:
                seeds = generate_patterns(profile, profile.selector_signals)
            except Exception as e:
                ctx.warn(f"Discovery pattern generation failed: {e}")
                seeds = []
            ctx.tag(seeds, "strong")
            stats.pattern_sources["discovery"] = len(seeds)
            all_patterns.extend(seeds)

        templates = await _mine_templates(ctx, options, stats)
        stats.pattern_sources["templates"] = len(templates)
        all_patterns.extend(templates)

        if profile is not None and not options.skip_packs:
            packs = await _load_packs(ctx, profile)
            stats.pattern_sources["framework_packs"] = len(packs)
            all_patterns.extend(packs)

        if not options.skip_mining_modules:
            all_patterns.extend(await _mine_passive_signals(ctx, stats))
    finally:
        if ctx.owns_cache:
            ctx.cache.clear()

    stats.total_before_qc = len(all_patterns)
    final_patterns = await _apply_quality_controls(ctx, all_patterns, threshold, stats)

    if len(final_patterns) < PATTERN_COVERAGE_TARGET:
        ctx.warnings.append(
            f"Pattern count ({len(final_patterns)}) is below the coverage target ({PATTERN_COVERAGE_TARGET}). "
            f"Consider adding framework packs or mining modules to increase coverage."
        )

    if len(final_patterns) > options.max_patterns:
        final_patterns = sorted(final_patterns, key=lambda p: p.confidence, reverse=True)[:options.max_patterns]
        ctx.warn(
            f"Pattern count ({stats.total_before_qc}) exceeded cap ({options.max_patterns}), "
            f"truncated to top {options.max_patterns} by confidence"
        )
    stats.total_after_qc = len(final_patterns)

    patterns_file = None
    if profile is not None:
        patterns_file = await _persist(ctx, profile, final_patterns, Path(options.output_dir or ctx.llkb_root))

    stats.duration_ms = ctx.elapsed_ms()
    result = PipelineResult(
        success=not ctx.errors,
        profile=profile,
        patterns_file=patterns_file,
        stats=stats,
        warnings=ctx.warnings,
        errors=ctx.errors,
    )
    logger.info(
        f"Discovery pipeline finished in {stats.duration_ms}ms: "
        f"{stats.total_before_qc} -> {stats.total_after_qc} patterns, "
        f"{len(ctx.warnings)} warnings, {len(ctx.errors)} errors"
    )
    return result


def format_pipeline_result(result: PipelineResult) -> str:
    stats = result.stats
    lines = [
        f"Discovery pipeline: {'OK' if result.success else 'FAILED'} ({stats.duration_ms}ms)",
        "Pattern sources:",
    ]
    lines += [f"  {source}: {count}" for source, count in stats.pattern_sources.items()]
    lines.append(f"Patterns: {stats.total_before_qc} before QC, {stats.total_after_qc} after QC")
    if stats.mining:
        lines.append("Mining: " + ", ".join(f"{k}={v}" for k, v in stats.mining.items()))
    if result.warnings:
        lines.append("Warnings:")
        lines += [f"  ! {w}" for w in result.warnings]
    if result.errors:
        lines.append("Errors:")
        lines += [f"  x {e}" for e in result.errors]
    return "\n".join(lines)


def pipeline_stats_dict(stats: PipelineStats) -> Dict[str, Any]:
    return {
        "duration_ms": stats.duration_ms,
        "pattern_sources": dict(stats.pattern_sources),
        "total_before_qc": stats.total_before_qc,
        "total_after_qc": stats.total_after_qc,
        "quality_controls": stats.quality_controls.to_dict() if stats.quality_controls else None,
        "mining": stats.mining,
    }
