"""Public package exports for the secondary-vertexing framework."""
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


from .composite import vertex_to_track_state
from .dcafitter import DCAFitter
from .exceptions import (
    ConfigurationError,
    DegenerateTrajectoryError,
    TrackLookupError,
    VertexingError,
)
from .models import (
    Cand2ProngRecord,
    DCAFitterConfig,
    EventInput,
    LorentzVector,
    ParticleHypothesis,
    SecondaryVertexRecord,
    TrackRecord,
    TrackState,
    TrackTable,
    VertexCandidate,
)
from .pid import (
    PidMode,
    PidStatus,
    TrackSelectorPid,
    make_electron,
    make_kaon,
    make_lambda,
    make_muon,
    make_pion,
    make_proton,
    make_xi,
    particle_hypothesis_from_name,
)
from .propagator import Propagator, propagate_to_x, rotate_to_frame
from .qa import CounterSink, NullSink
from .selector import PidTrack, XiPiCandidate, XiPiSelection, XiPiSelectorConfig, select_xi_pi
from .vertexer import CandidateBuilder2Prong, RecordCollector, Vertexer, track_qa

__all__ = [
    "DCAFitter",
    "DCAFitterConfig",
    "Propagator",
    "propagate_to_x",
    "rotate_to_frame",
    "TrackState",
    "TrackRecord",
    "TrackTable",
    "EventInput",
    "VertexCandidate",
    "SecondaryVertexRecord",
    "Cand2ProngRecord",
    "LorentzVector",
    "ParticleHypothesis",
    "Vertexer",
    "RecordCollector",
    "CandidateBuilder2Prong",
    "track_qa",
    "vertex_to_track_state",
    "CounterSink",
    "NullSink",
    "PidMode",
    "PidStatus",
    "TrackSelectorPid",
    "PidTrack",
    "XiPiCandidate",
    "XiPiSelection",
    "XiPiSelectorConfig",
    "select_xi_pi",
    "VertexingError",
    "DegenerateTrajectoryError",
    "ConfigurationError",
    "TrackLookupError",
    "make_pion",
    "make_kaon",
    "make_proton",
    "make_muon",
    "make_electron",
    "make_lambda",
    "make_xi",
    "particle_hypothesis_from_name",
]
