import logging
import time
from dataclasses import replace
from typing import Callable, Optional

from .layout import total_num_params
from .logging_config import ensure_verbose_output
from .model import AlignmentModel, PseudolikelihoodModel
from .objective import ObjectiveFunction
from .result import FieldsAndCouplings
from .threads import check_num_threads
from .types import RunConfig

logger = logging.getLogger(__name__)

ModelFactory = Callable[[RunConfig], AlignmentModel]


def plmdca_backend(config: RunConfig, model_factory: Optional[ModelFactory] = None) -> FieldsAndCouplings:
    """
    Fit fields and couplings to an encoded alignment by pseudolikelihood maximization.

    Args:
        config: run-scoped settings, see RunConfig
        model_factory: builds the alignment model from the config,
            defaults to PseudolikelihoodModel.from_config

    Returns:
        FieldsAndCouplings owning the flat parameter vector. Raises
        ConfigurationError, DimensionError or AllocationError before any
        optimizer call when the run cannot start.
    """
    if config.verbose:
        ensure_verbose_output()

    # threads are validated before anything touches the alignment
    num_threads = check_num_threads(config.num_threads)
    if num_threads != config.num_threads:
        config = replace(config, num_threads=num_threads)

    L, q = config.seqs_len, config.num_site_states
    n = total_num_params(L, q)
    if config.verbose:
        logger.info(f"plmDCA: biomolecule={config.biomolecule}, L={L}, q={q}, "
                    f"parameters={n}, threads={config.num_threads}")

    factory = model_factory or PseudolikelihoodModel.from_config
    model = factory(config)
    try:
        fun = ObjectiveFunction(model, config.lbfgs, method=config.method, verbose=config.verbose)

        start_time = time.perf_counter()
        result = fun.run(n)
        elapsed = time.perf_counter() - start_time
        if config.verbose:
            logger.info(f"optimization time = {elapsed:.4f}s")
    finally:
        close = getattr(model, "close", None)
        if close is not None:
            close()

    return FieldsAndCouplings(fun.release_buffer(), L, q,
                              termination=result.termination, fx=result.fx,
                              iterations=result.iterations)
