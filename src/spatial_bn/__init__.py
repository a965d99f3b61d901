"""
spatial-bn: gradient of spatial batch normalization for NCHW / NHWC feature maps.

Provides the CPU reference backward kernel and the gradient wiring that decides,
from the forward operator's training/inference mode, which tensors feed it.
"""

from ._errors import (
    SpatialBNError,
    ShapeMismatchError,
    GradientWiringError,
    ArityMismatchError,
    UnknownStorageOrderError,
)
from ._order import StorageOrder
from ._backward import spatial_bn_backward
from ._registry import OpSchema, register_operator, register_gradient, get_operator, gradient_defs_for
from .wiring import (
    OperatorDef,
    InferenceWiring,
    TrainingWiring,
    grad_name,
    plan_wiring,
    spatial_bn_gradient_defs,
)
from .ops import SpatialBNGradientOp, Workspace, spatial_bn_gradient

__version__ = "0.1.0"
__all__ = [
    "StorageOrder",
    "spatial_bn_backward",
    "spatial_bn_gradient",
    "SpatialBNGradientOp",
    "Workspace",
    # Gradient wiring
    "OperatorDef",
    "InferenceWiring",
    "TrainingWiring",
    "grad_name",
    "plan_wiring",
    "spatial_bn_gradient_defs",
    # Registries
    "OpSchema",
    "register_operator",
    "register_gradient",
    "get_operator",
    "gradient_defs_for",
    # Errors
    "SpatialBNError",
    "ShapeMismatchError",
    "GradientWiringError",
    "ArityMismatchError",
    "UnknownStorageOrderError",
]
