from dataclasses import dataclass, field
from typing import Optional
import numpy as np
from numpy.typing import NDArray

from .errors import ConfigurationError

# number of site states (residues plus gap) per biomolecule
ALL_BIOMOLECULES = {"PROTEIN": 21, "RNA": 5}

ALL_METHODS = ["L-BFGS-B", "LD_LBFGS"]


@dataclass
class EncodedMSA:  # alignment already mapped to integer states
    seqs: NDArray                       # [M, L] states in [0, q)
    weights: Optional[NDArray] = None   # [M,] reweighting coeffs, None -> uniform
    seqid: Optional[float] = None       # identity threshold the weights came from

    def __post_init__(self):
        self.seqs = np.asarray(self.seqs)
        if self.seqs.ndim != 2:
            raise ValueError("seqs should be a (M, L) matrix")
        if self.weights is not None:
            self.weights = np.asarray(self.weights, dtype=np.float64)

    @property
    def M(self) -> int:
        return self.seqs.shape[0]

    @property
    def L(self) -> int:
        return self.seqs.shape[1]


@dataclass(frozen=True)
class LbfgsParam:  # fixed quasi-Newton settings, only max_iterations varies
    max_iterations: int
    epsilon: float = 1e-3      # ||g|| / max(1, ||x||) stopping threshold
    ftol: float = 1e-4         # relative decrease of f stopping threshold
    max_linesearch: int = 5    # trials per line search
    m: int = 5                 # history depth


@dataclass
class RunConfig:  # everything one optimization run needs
    biomolecule: str
    num_site_states: int
    msa: EncodedMSA
    seqs_len: int
    seqid: float = 0.8          # identity threshold behind msa.weights, recorded on the model
    lambda_h: float = 1.0
    lambda_J: float = 0.01
    max_iterations: int = 500
    num_threads: int = 1
    verbose: bool = False
    method: str = "L-BFGS-B"
    lbfgs: LbfgsParam = field(init=False)

    def __post_init__(self):
        self.biomolecule = self.biomolecule.upper()
        if self.biomolecule not in ALL_BIOMOLECULES:
            raise ConfigurationError(f"biomolecule should be one of {list(ALL_BIOMOLECULES)}, "
                                     f"got {self.biomolecule!r}")
        expected_states = ALL_BIOMOLECULES[self.biomolecule]
        if self.num_site_states != expected_states:
            raise ConfigurationError(f"{self.biomolecule} alignments have {expected_states} site states, "
                                     f"got num_site_states={self.num_site_states}")
        if self.method not in ALL_METHODS:
            raise ConfigurationError(f"method should be one of {ALL_METHODS}, got {self.method!r}")
        if self.num_site_states < 1 or self.seqs_len < 1:
            raise ConfigurationError("num_site_states and seqs_len should be positive")
        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations should be positive")
        if self.lambda_h < 0 or self.lambda_J < 0:
            raise ConfigurationError("regularization strengths should be non-negative")
        self.lbfgs = LbfgsParam(max_iterations=self.max_iterations)
