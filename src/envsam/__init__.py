"""envsam - Environment smoothing and mapping in Python."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .symbols import INVALID_SYMBOL, Symbol, SymbolRegistry
from .errors import (
    FrameExistsError,
    ItemNotFoundError,
    NoiseModelError,
    SAMError,
    SolverError,
    UnknownFrameError,
)
from .config import (
    AssociationConfig,
    CandidateSearchConfig,
    PointCloudConfig,
    SAMConfig,
    SolverConfig,
)
from .frontend import SE3, AlignedBoundingBox, PointCloud, VoxelGridFilter
from .graph import (
    FactorGraph,
    FactorGraphStore,
    NoiseModel,
    PoseWithCovariance,
    SpatialGraph,
)
from .loop_closure import (
    DataAssociation,
    ForcedCandidateWindow,
    LoopCandidate,
    LoopClosureCandidateSearch,
)
from .backend import OptimizationOrchestrator, OptimizationResult, ScipyGraphSolver
from .sam_system import SmoothingAndMapping

__all__ = [
    "__version__",
    # Symbols
    "Symbol",
    "SymbolRegistry",
    "INVALID_SYMBOL",
    # Errors
    "SAMError",
    "UnknownFrameError",
    "ItemNotFoundError",
    "FrameExistsError",
    "NoiseModelError",
    "SolverError",
    # Configuration
    "SAMConfig",
    "SolverConfig",
    "CandidateSearchConfig",
    "AssociationConfig",
    "PointCloudConfig",
    # System
    "SmoothingAndMapping",
    # Frontend
    "SE3",
    "AlignedBoundingBox",
    "PointCloud",
    "VoxelGridFilter",
    # Graphs
    "NoiseModel",
    "FactorGraph",
    "FactorGraphStore",
    "SpatialGraph",
    "PoseWithCovariance",
    # Loop Closure
    "LoopClosureCandidateSearch",
    "LoopCandidate",
    "ForcedCandidateWindow",
    "DataAssociation",
    # Backend
    "OptimizationOrchestrator",
    "OptimizationResult",
    "ScipyGraphSolver",
]
