"""SpatialBNGradient operator and a minimal name-keyed workspace to run it."""

import logging
import torch
from typing import Dict, Optional

from ._backward import Grads, spatial_bn_backward
from ._order import StorageOrder
from ._registry import get_operator, register_operator
from .wiring import OperatorDef

logger = logging.getLogger(__name__)


@register_operator("SpatialBNGradient", num_inputs=5, num_outputs=3)
class SpatialBNGradientOp:
    """
    Gradient of spatial batch normalization for one storage order.

    Input: X, scale, dY, mean, inv_std
    Output: dX, dScale, dBias

    Args:
        order: StorageOrder or its name ("NCHW" / "NHWC"), fixed for the instance

    Example:
        >>> op = SpatialBNGradientOp(order="NHWC")
        >>> dX, dScale, dBias = op(X, scale, dY, saved_mean, saved_inv_std)
    """

    def __init__(self, order=StorageOrder.NCHW):
        self.order = StorageOrder.parse(order)

    @classmethod
    def from_def(cls, op_def: OperatorDef) -> "SpatialBNGradientOp":
        return cls(order=op_def.get_arg("order", StorageOrder.NCHW.value))

    def run(
        self,
        X: torch.Tensor,
        scale: torch.Tensor,
        dY: torch.Tensor,
        mean: torch.Tensor,
        inv_std: torch.Tensor,
        out: Optional[Grads] = None,
    ) -> Grads:
        return spatial_bn_backward(X, dY, scale, mean, inv_std, self.order, out=out)

    __call__ = run

    def __repr__(self) -> str:
        return f"SpatialBNGradientOp(order={self.order.value})"


def spatial_bn_gradient(
    X: torch.Tensor,
    scale: torch.Tensor,
    dY: torch.Tensor,
    mean: torch.Tensor,
    inv_std: torch.Tensor,
    order=StorageOrder.NCHW,
) -> Grads:
    """
    Functional form of SpatialBNGradient.

    Args:
        X: Forward input (N, C, H, W) or (N, H, W, C)
        scale: Per-channel scale (C,)
        dY: Gradient w.r.t. the forward output, same shape as X
        mean: Per-channel mean the forward pass normalized with (C,)
        inv_std: Per-channel inverse standard deviation (C,)
        order: "NCHW" or "NHWC"

    Returns:
        dX, dScale, dBias
    """
    return spatial_bn_backward(X, dY, scale, mean, inv_std, order)


class Workspace:
    """Named tensor store that runs operator definitions against its blobs."""

    def __init__(self):
        self.blobs: Dict[str, torch.Tensor] = {}

    def feed(self, name: str, tensor: torch.Tensor) -> None:
        self.blobs[name] = tensor

    def fetch(self, name: str) -> torch.Tensor:
        try:
            return self.blobs[name]
        except KeyError:
            raise KeyError(f"Blob {name!r} not found in workspace") from None

    def has(self, name: str) -> bool:
        return name in self.blobs

    def run_operator(self, op_def: OperatorDef) -> None:
        """
        Instantiate and run `op_def`, storing its outputs under their names.

        Existing output blobs are passed to the operator as buffers and are
        resized and overwritten in place.
        """
        cls, schema = get_operator(op_def.type)
        schema.check(op_def)
        op = cls.from_def(op_def)

        inputs = [self.fetch(name) for name in op_def.inputs]
        out = tuple(self.blobs.get(name) for name in op_def.outputs)
        logger.debug("Running %r: %s -> %s", op, op_def.inputs, op_def.outputs)

        results = op.run(*inputs, out=out)
        for name, tensor in zip(op_def.outputs, results):
            self.blobs[name] = tensor
