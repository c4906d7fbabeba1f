import numpy as np
from typing import Tuple

from .errors import DimensionError


def total_num_params(L: int, q: int) -> int:
    """Length of the flat vector holding L*q fields and one q*q block per site pair i<j."""
    if L < 1 or q < 1:
        raise ValueError(f"sequence length and number of states should be positive, got L={L}, q={q}")
    num_pairs = L * (L - 1) // 2  # zero for L == 1
    return L * q + num_pairs * q * q


def pair_index(i: int, j: int, L: int) -> int:
    """Rank of the pair (i, j), i < j, in lexicographic order over i then j."""
    if not 0 <= i < j < L:
        raise ValueError(f"expected 0 <= i < j < {L}, got ({i}, {j})")
    return i * L - i * (i + 1) // 2 + (j - i - 1)


def field_offset(i: int, q: int) -> int:
    return i * q


def coupling_offset(i: int, j: int, L: int, q: int) -> int:
    return L * q + pair_index(i, j, L) * q * q


def unpack(x: np.ndarray, L: int, q: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split the flat vector into fields and couplings.
    x: (L*q + L(L-1)/2*q*q,)
    returns h (L, q) and J (L, L, q, q) with J[j,i] = J[i,j].T and zero diagonal blocks
    """
    n = total_num_params(L, q)
    if x.shape != (n,):
        raise DimensionError(f"expected a vector of {n} parameters for L={L}, q={q}, got shape {x.shape}")

    h = x[:L * q].reshape(L, q)
    blocks = x[L * q:].reshape(-1, q, q)    # (num_pairs, q, q)

    iu, ju = np.triu_indices(L, k=1)        # lexicographic i<j, same order as pair_index
    J = np.zeros((L, L, q, q), dtype=x.dtype)
    J[iu, ju] = blocks
    J[ju, iu] = blocks.transpose(0, 2, 1)
    return h, J


def pack(h: np.ndarray, J: np.ndarray) -> np.ndarray:
    """Inverse of unpack, only the i<j coupling blocks are read."""
    L, q = h.shape
    if J.shape != (L, L, q, q):
        raise DimensionError(f"couplings should have shape {(L, L, q, q)}, got {J.shape}")

    iu, ju = np.triu_indices(L, k=1)
    return np.concatenate([h.ravel(), J[iu, ju].ravel()])
