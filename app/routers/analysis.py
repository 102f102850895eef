"""
Analysis Router
Heuristic analyses over Go runtime profiles.

Each endpoint accepts a profile either inline (``profile``: the parsed
profile as JSON) or by path (``profile_path``, relative to
PROFILES_ROOT), runs the matching analyzer_pprof runner and returns its
report unchanged.
"""
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field, ValidationError

from analyzer_pprof.core.categorize import get_category_preset, list_category_presets  # type: ignore
from analyzer_pprof.core.profile import Profile  # type: ignore
from analyzer_pprof.io.loader import load_profile, profile_from_dict  # type: ignore
from analyzer_pprof.io.schema import (  # type: ignore
    AllocPathsReport,
    BundleReport,
    CategorizeReport,
    ContentionReport,
    CorrelationReport,
    GoroutineReport,
    HotspotReport,
    MemoryReport,
    MetaReport,
    OverheadReport,
    RegressionCheckSpec,
    RegressionReport,
    TemporalReport,
)
from analyzer_pprof.runner import (  # type: ignore
    run_alloc_paths,
    run_bundle_report,
    run_categorize,
    run_contention,
    run_correlate,
    run_goroutines,
    run_hotspots,
    run_memory,
    run_meta,
    run_overhead,
    run_regression,
    run_temporal,
)

from app.config import settings

logger = logging.getLogger(__name__)


# =============================================================================
# Request Models
# =============================================================================

class ProfileInput(BaseModel):
    """A profile supplied inline or by path."""
    profile: Optional[Dict[str, Any]] = Field(
        None,
        description="Parsed profile document (sample_types, samples, ...)",
    )
    profile_path: Optional[str] = Field(
        None,
        description="Profile JSON file under PROFILES_ROOT (relative, or absolute inside it)",
    )


class MetaRequest(ProfileInput):
    source_name: Optional[str] = None
    sample_type: Optional[str] = Field(
        None,
        description="Column being viewed; selects the in-use or allocation heap hints",
    )


class OverheadRequest(ProfileInput):
    sample_index: Optional[int] = Field(None, ge=0)


class ContentionRequest(ProfileInput):
    source_name: Optional[str] = Field(
        None,
        description="Original file name; 'block' or 'mutex' in it sets profile_type",
    )


class GoroutinesRequest(ProfileInput):
    leak_threshold: Optional[int] = Field(None, gt=0)


class CategorizeRequest(ProfileInput):
    categories: Dict[str, str] = Field(
        default_factory=dict,
        description="Category name → regex over the ' | '-joined stack",
    )
    presets: List[str] = Field(default_factory=list)


class AllocPathsRequest(ProfileInput):
    app_prefixes: Optional[List[str]] = None
    min_percent: Optional[float] = Field(None, ge=0)
    max_paths: Optional[int] = Field(None, gt=0)
    group_by_source: bool = False


class RegressionRequest(ProfileInput):
    checks: List[RegressionCheckSpec]
    sample_type: Optional[str] = None


class MemoryRequest(BaseModel):
    heap: ProfileInput
    cpu: Optional[ProfileInput] = None
    goroutine: Optional[ProfileInput] = None
    container_rss_mb: Optional[float] = Field(None, gt=0)
    repo_root: Optional[str] = Field(
        None,
        description="Go source tree scanned for confirming patterns",
    )


class BundleRequest(BaseModel):
    cpu: Optional[ProfileInput] = None
    heap: Optional[ProfileInput] = None
    mutex: Optional[ProfileInput] = None
    block: Optional[ProfileInput] = None
    goroutine: Optional[ProfileInput] = None
    node_count: Optional[int] = Field(None, gt=0)


class PresetsResponse(BaseModel):
    presets: Dict[str, Dict[str, str]]


# =============================================================================
# Helpers
# =============================================================================

def _resolve_path(raw: str) -> Path:
    """Resolve *raw* under PROFILES_ROOT; paths that escape the root are rejected."""
    root = Path(settings.PROFILES_ROOT).resolve()
    path = (root / raw).resolve()
    if root not in path.parents:
        raise ValueError(f"profile_path must stay under the profiles root: {raw}")
    return path


def _load(source: Optional[ProfileInput], label: str = "profile") -> Optional[Profile]:
    if source is None:
        return None
    if source.profile is not None:
        return profile_from_dict(source.profile)
    if source.profile_path:
        return load_profile(_resolve_path(source.profile_path))
    raise ValueError(f"{label}: provide 'profile' or 'profile_path'")


def _bundle(request: BundleRequest) -> Dict[str, Optional[Profile]]:
    return {
        kind: _load(getattr(request, kind), kind)
        for kind in ("cpu", "heap", "mutex", "block", "goroutine")
    }


def _run(fn: Callable[[], Any]):
    """Call a runner, mapping engine errors onto HTTP status codes."""
    try:
        return fn()
    except FileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False),
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


@router.get("/presets", response_model=PresetsResponse, summary="Goroutine category presets")
def list_presets():
    return PresetsResponse(
        presets={name: get_category_preset(name) for name in list_category_presets()},
    )


@router.post("/meta", response_model=MetaReport, summary="Describe a profile")
def meta_endpoint(request: MetaRequest):
    return _run(lambda: run_meta(
        _load(request), source_name=request.source_name, sample_type=request.sample_type,
    ))


@router.post("/overhead", response_model=OverheadReport, summary="Infrastructure overhead")
def overhead_endpoint(request: OverheadRequest):
    return _run(lambda: run_overhead(_load(request), sample_index=request.sample_index))


@router.post("/memory", response_model=MemoryReport, summary="Off-heap memory suspicions")
def memory_endpoint(request: MemoryRequest):
    """
    Only ``heap`` is required.  Supplying ``cpu`` lets native allocations
    be confirmed; ``goroutine`` and ``container_rss_mb`` enable the stack
    and RSS checks; ``repo_root`` enables the source scan.
    """
    return _run(lambda: run_memory(
        _load(request.heap, "heap"),
        cpu_profile=_load(request.cpu, "cpu"),
        goroutine_profile=_load(request.goroutine, "goroutine"),
        container_rss_mb=request.container_rss_mb,
        repo_root=Path(request.repo_root) if request.repo_root else None,
    ))


@router.post("/contention", response_model=ContentionReport, summary="Lock contention by site")
def contention_endpoint(request: ContentionRequest):
    return _run(lambda: run_contention(_load(request), source_name=request.source_name))


@router.post("/goroutines", response_model=GoroutineReport, summary="Goroutine states and leaks")
def goroutines_endpoint(request: GoroutinesRequest):
    return _run(lambda: run_goroutines(_load(request), leak_threshold=request.leak_threshold))


@router.post(
    "/goroutines/categorize",
    response_model=CategorizeReport,
    summary="Goroutine categorization by regex",
)
def categorize_endpoint(request: CategorizeRequest):
    return _run(lambda: run_categorize(
        _load(request), categories=request.categories, presets=request.presets,
    ))


@router.post(
    "/goroutines/temporal",
    response_model=TemporalReport,
    summary="Temporal SDK worker settings",
)
def temporal_endpoint(request: ProfileInput):
    return _run(lambda: run_temporal(_load(request)))


@router.post("/alloc-paths", response_model=AllocPathsReport, summary="Heap allocation paths")
def alloc_paths_endpoint(request: AllocPathsRequest):
    return _run(lambda: run_alloc_paths(
        _load(request),
        app_prefixes=request.app_prefixes,
        min_percent=request.min_percent,
        max_paths=request.max_paths,
        group_by_source=request.group_by_source,
    ))


@router.post("/regression", response_model=RegressionReport, summary="Percentage ceilings")
def regression_endpoint(request: RegressionRequest):
    return _run(lambda: run_regression(
        _load(request), request.checks, sample_type=request.sample_type,
    ))


@router.post("/correlate", response_model=CorrelationReport, summary="Cross-profile correlation")
def correlate_endpoint(request: BundleRequest):
    node_count = request.node_count or settings.CORRELATION_NODE_COUNT
    return _run(lambda: run_correlate(_bundle(request), node_count=node_count))


@router.post("/hotspots", response_model=HotspotReport, summary="Top functions per profile")
def hotspots_endpoint(request: BundleRequest):
    return _run(lambda: run_hotspots(_bundle(request), node_count=request.node_count))


@router.post("/bundle", response_model=BundleReport, summary="All analyses for a profile bundle")
def bundle_endpoint(request: BundleRequest):
    return _run(lambda: run_bundle_report(_bundle(request)))
