from .errors import AllocationError, ConfigurationError, DimensionError, PlmDCAError, ReleasedHandleError
from .layout import pack, total_num_params, unpack
from .model import AlignmentModel, PseudolikelihoodModel
from .objective import ObjectiveFunction
from .optimizer import OptimizationResult, Termination, minimize
from .plmdca import plmdca_backend
from .result import FieldsAndCouplings
from .types import EncodedMSA, LbfgsParam, RunConfig

__all__ = [
    "AlignmentModel", "AllocationError", "ConfigurationError", "DimensionError",
    "EncodedMSA", "FieldsAndCouplings", "LbfgsParam", "ObjectiveFunction",
    "OptimizationResult", "PlmDCAError", "PseudolikelihoodModel", "ReleasedHandleError",
    "RunConfig", "Termination", "minimize", "pack", "plmdca_backend",
    "total_num_params", "unpack",
]
