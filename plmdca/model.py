import logging
from typing import Optional, Protocol, Tuple, runtime_checkable

import numpy as np
from scipy.special import logsumexp

from .errors import DimensionError
from .layout import total_num_params, unpack
from .threads import ChunkMap, split_rows
from .types import EncodedMSA, RunConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class AlignmentModel(Protocol):
    """What the optimizer needs from an alignment: a starting point and the objective with its gradient."""

    def initialize(self, buffer: np.ndarray) -> None:
        ...

    def gradient(self, x: np.ndarray, g: np.ndarray) -> float:
        ...


class PseudolikelihoodModel:
    """
    Regularized negative log-pseudolikelihood of an encoded MSA.

    f(h, J) = -sum_m w_m sum_i log P(s_i^m | s_-i^m) + lambda_h ||h||^2 + lambda_J ||J||^2
    P(a | s_-i) = softmax_a( h_i(a) + sum_{j != i} J_ij(a, s_j) )

    Sequences are split into num_threads fixed chunks whose partial sums are
    reduced in chunk order, so a given worker count always gives the same bits.
    """

    def __init__(self, msa: EncodedMSA, seqs_len: int, num_site_states: int,
                 lambda_h: float = 1.0, lambda_J: float = 0.01,
                 num_threads: int = 1, pc: float = 0.5,
                 seqid: Optional[float] = None):
        Z = msa.seqs
        M, L = Z.shape
        q = num_site_states
        if L != seqs_len:
            raise DimensionError(f"alignment has {L} columns but seqs_len={seqs_len}")
        if M == 0:
            raise ValueError("alignment has no sequences")
        if num_threads < 1:
            raise ValueError(f"num_threads should be at least 1, got {num_threads}")
        if Z.min() < 0 or Z.max() >= q:
            raise DimensionError(f"states should lie in [0, {q}), found [{Z.min()}, {Z.max()}]")

        if msa.weights is None:
            W = np.ones(M, dtype=np.float64)
        else:
            W = msa.weights
        if W.shape != (M,):
            raise DimensionError(f"expected {M} weights, got shape {W.shape}")
        if not np.isfinite(W).all() or (W < 0).any():
            raise ValueError("weights should be finite and non-negative")
        if W.sum() <= 0:
            raise ValueError("weights should not all be zero")

        self.L, self.q, self.M = L, q, M
        self.lambda_h, self.lambda_J = lambda_h, lambda_J
        self.pc = pc
        self.seqid = msa.seqid if seqid is None else seqid  # provenance only
        self.num_params = total_num_params(L, q)

        self.Z = Z.astype(np.intp)                      # (M, L)
        self.W = W                                      # (M,)
        self.X = np.eye(q, dtype=np.float64)[self.Z]    # (M, L, q) one-hot
        self.M_eff = float(W.sum())

        self.chunks = split_rows(M, num_threads)
        self._map = ChunkMap(num_threads)
        logger.debug(f"alignment: M={M}, M_eff={self.M_eff:.2f}, L={L}, q={q}, "
                     f"seqid={self.seqid}, chunks={len(self.chunks)}")

    @classmethod
    def from_config(cls, config: RunConfig) -> "PseudolikelihoodModel":
        return cls(config.msa, config.seqs_len, config.num_site_states,
                   lambda_h=config.lambda_h, lambda_J=config.lambda_J,
                   num_threads=config.num_threads, seqid=config.seqid)

    def close(self):
        self._map.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def single_site_freqs(self) -> np.ndarray:
        """Weighted single-site frequencies smoothed with pc, (L, q)."""
        f = np.einsum('m,mia->ia', self.W, self.X) / self.M_eff
        return f * (1 - self.pc) + self.pc / self.q

    def initialize(self, buffer: np.ndarray) -> None:
        """Fields from centred log frequencies, couplings zero."""
        if buffer.shape != (self.num_params,):
            raise DimensionError(f"buffer should hold {self.num_params} parameters, got shape {buffer.shape}")
        logf = np.log(self.single_site_freqs())
        h = logf - logf.mean(axis=1, keepdims=True)
        buffer[:] = 0.0
        buffer[:self.L * self.q] = h.ravel()

    def _chunk_terms(self, rows: slice, h: np.ndarray, J: np.ndarray) -> Tuple[float, np.ndarray, np.ndarray]:
        X, Z, W = self.X[rows], self.Z[rows], self.W[rows]

        E = h[None] + np.einsum('ijab,mjb->mia', J, X, optimize=True)  # (m, L, q)
        lnorm = logsumexp(E, axis=2)                                   # (m, L)
        E_obs = np.take_along_axis(E, Z[..., None], axis=2)[..., 0]    # (m, L)
        nlpl = -float(W @ (E_obs - lnorm).sum(axis=1))

        # d(-log P)/dE = P - onehot
        R = W[:, None, None] * (np.exp(E - lnorm[..., None]) - X)      # (m, L, q)
        grad_h = R.sum(axis=0)                                         # (L, q)
        grad_J = np.einsum('mia,mjb->ijab', R, X, optimize=True)       # (L, L, q, q)
        return nlpl, grad_h, grad_J

    def gradient(self, x: np.ndarray, g: np.ndarray) -> float:
        """Fill g with the gradient at x and return the objective."""
        L, q = self.L, self.q
        if g.shape != x.shape:
            raise DimensionError(f"gradient shape {g.shape} does not match x {x.shape}")
        h, J = unpack(x, L, q)

        partials = self._map(lambda rows: self._chunk_terms(rows, h, J), self.chunks)
        nlpl = 0.0
        grad_h = np.zeros((L, q))
        grad_J = np.zeros((L, L, q, q))
        for p_nlpl, p_h, p_J in partials:
            nlpl += p_nlpl
            grad_h += p_h
            grad_J += p_J

        # J_ij(a,b) enters the conditionals of both site i and site j
        iu, ju = np.triu_indices(L, k=1)
        grad_pairs = grad_J[iu, ju] + grad_J[ju, iu].transpose(0, 2, 1)

        x_h, x_J = x[:L * q], x[L * q:]
        g[:L * q] = grad_h.ravel() + 2.0 * self.lambda_h * x_h
        g[L * q:] = grad_pairs.ravel() + 2.0 * self.lambda_J * x_J

        return nlpl + self.lambda_h * float(x_h @ x_h) + self.lambda_J * float(x_J @ x_J)
