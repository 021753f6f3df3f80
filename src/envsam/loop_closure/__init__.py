"""Loop closure detection for smoothing and mapping.

Key components:
- LoopClosureCandidateSearch: Bounding-volume search for revisited poses
- DataAssociation: Descriptor matching, gating and landmark creation
- gating: Chi-square gate on Mahalanobis distances
"""

from .candidate_search import (
    CandidatePolicy,
    ForcedCandidateWindow,
    LoopCandidate,
    LoopClosureCandidateSearch,
    directional_query_points,
)
from .data_association import (
    AssociationResult,
    CandidateMatchReport,
    DataAssociation,
    median_score,
    score_mask,
)
from .gating import accept_point_distance, chi_square_critical, mahalanobis_squared

__all__ = [
    # Candidate Search
    "LoopClosureCandidateSearch",
    "LoopCandidate",
    "CandidatePolicy",
    "ForcedCandidateWindow",
    "directional_query_points",
    # Data Association
    "DataAssociation",
    "AssociationResult",
    "CandidateMatchReport",
    "median_score",
    "score_mask",
    # Gating
    "chi_square_critical",
    "mahalanobis_squared",
    "accept_point_distance",
]
