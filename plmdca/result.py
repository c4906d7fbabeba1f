import logging
from typing import Optional

import numpy as np

from .errors import DimensionError, ReleasedHandleError
from .layout import total_num_params, unpack
from .optimizer import Termination

logger = logging.getLogger(__name__)


class FieldsAndCouplings:
    """
    Owned result of one plmDCA run: the flat parameter vector plus how the run ended.

    The vector is released exactly once, by release() or on leaving a with-block.
    Later release() calls are no-ops, any other access raises ReleasedHandleError.
    """

    def __init__(self, h_and_J: np.ndarray, seqs_len: int, num_site_states: int,
                 termination: Termination, fx: float, iterations: int):
        expected = total_num_params(seqs_len, num_site_states)
        if h_and_J.shape != (expected,):
            raise DimensionError(f"expected {expected} fields and couplings, got shape {h_and_J.shape}")
        self._h_and_J: Optional[np.ndarray] = h_and_J
        self.seqs_len = seqs_len
        self.num_site_states = num_site_states
        self.termination = termination
        self.fx = fx
        self.iterations = iterations

    @property
    def released(self) -> bool:
        return self._h_and_J is None

    @property
    def values(self) -> np.ndarray:
        if self._h_and_J is None:
            raise ReleasedHandleError("fields and couplings have already been released")
        return self._h_and_J

    def __len__(self) -> int:
        return self.values.shape[0]

    def fields(self) -> np.ndarray:
        """(L, q) copy of the fields"""
        h, _ = unpack(self.values, self.seqs_len, self.num_site_states)
        return h.copy()

    def couplings(self) -> np.ndarray:
        """(L, L, q, q) couplings, J[j, i] = J[i, j].T"""
        _, J = unpack(self.values, self.seqs_len, self.num_site_states)
        return J

    def release(self) -> None:
        if self._h_and_J is None:
            return
        logger.debug(f"releasing {self._h_and_J.shape[0]} fields and couplings")
        self._h_and_J = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()

    def __repr__(self):
        state = "released" if self.released else f"n={self._h_and_J.shape[0]}"
        return (f"FieldsAndCouplings(L={self.seqs_len}, q={self.num_site_states}, {state}, "
                f"termination={self.termination.name}, fx={self.fx:.4f})")
