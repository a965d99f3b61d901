"""Backward pass of spatial batch normalization (CPU reference path).

For every channel c, with sums taken over the batch and spatial axes and
M = N * H * W:

    dBias[c]  = sum(dY)
    dScale[c] = sum((X - mean[c]) * inv_std[c] * dY)
    dX        = scale[c] * inv_std[c] / M
                * (M * dY - dBias[c] - (X - mean[c]) * inv_std[c] * dScale[c])

Both layouts run the same two passes:
1. reduce dY and (X - mean) * inv_std * dY into the per-channel dBias / dScale
2. compute dX elementwise from the now complete per-channel totals

Every element of dX depends on the channel totals, so pass 2 starts only
after pass 1 has seen the whole batch.

Layout traversal:
- NCHW: X is viewed as (N, C, H*W). Each (n, c) row is a contiguous plane and
  is reduced to a scalar, then the rows are folded into the channel totals.
- NHWC: X is viewed as (N*H*W, C). Each row holds all C channels of one
  position and is accumulated as a length-C vector.
"""

import logging
import torch
from typing import Callable, NamedTuple, Optional, Tuple

from ._errors import ShapeMismatchError, UnknownStorageOrderError
from ._order import StorageOrder

logger = logging.getLogger(__name__)

Grads = Tuple[torch.Tensor, torch.Tensor, torch.Tensor]


# =============================================================================
# NCHW: channel-major
# =============================================================================

def _view_nchw(t: torch.Tensor, N: int, C: int, H: int, W: int) -> torch.Tensor:
    return t.view(N, C, H * W)


def _reduce_nchw(
    X: torch.Tensor, dY: torch.Tensor, mean: torch.Tensor, inv_std: torch.Tensor,
    dBias: torch.Tensor, dScale: torch.Tensor,
) -> None:
    """
    Pass 1 over (N, C, H*W) views.

    Sums each contiguous H*W plane, then folds the (n, c) partial sums into
    the channel accumulators in batch order.
    """
    mean = mean[:, None]
    inv_std = inv_std[:, None]

    dY_plane = dY.sum(dim=2)                                  # (N, C)
    dScale_plane = ((X - mean) * inv_std * dY).sum(dim=2)    # (N, C)

    for n in range(X.shape[0]):
        dBias += dY_plane[n]
        dScale += dScale_plane[n]


def _input_grad_nchw(
    X: torch.Tensor, dY: torch.Tensor, scale: torch.Tensor, mean: torch.Tensor,
    inv_std: torch.Tensor, dBias: torch.Tensor, dScale: torch.Tensor, dX: torch.Tensor,
) -> None:
    """Pass 2 over (N, C, H*W) views: per-channel scalars broadcast over each plane."""
    M = X.shape[0] * X.shape[2]
    coef = (scale * inv_std / M)[:, None]

    dX.copy_(
        coef * (
            dY * M
            - dBias[:, None]
            - (X - mean[:, None]) * dScale[:, None] * inv_std[:, None]
        )
    )


# =============================================================================
# NHWC: channel-minor
# =============================================================================

def _view_nhwc(t: torch.Tensor, N: int, C: int, H: int, W: int) -> torch.Tensor:
    return t.view(N * H * W, C)


def _reduce_nhwc(
    X: torch.Tensor, dY: torch.Tensor, mean: torch.Tensor, inv_std: torch.Tensor,
    dBias: torch.Tensor, dScale: torch.Tensor,
) -> None:
    """Pass 1 over (N*H*W, C) views: length-C vectors summed across positions."""
    dBias += dY.sum(dim=0)
    dScale += ((X - mean) * inv_std * dY).sum(dim=0)


def _input_grad_nhwc(
    X: torch.Tensor, dY: torch.Tensor, scale: torch.Tensor, mean: torch.Tensor,
    inv_std: torch.Tensor, dBias: torch.Tensor, dScale: torch.Tensor, dX: torch.Tensor,
) -> None:
    """Pass 2 over (N*H*W, C) views: one length-C vector of dX per position."""
    M = X.shape[0]
    coef = scale * inv_std / M

    dX.copy_(coef * (dY * M - dBias - (X - mean) * dScale * inv_std))


class _LayoutPasses(NamedTuple):
    view: Callable[..., torch.Tensor]
    reduce: Callable[..., None]
    input_grad: Callable[..., None]


_LAYOUTS = {
    StorageOrder.NCHW: _LayoutPasses(_view_nchw, _reduce_nchw, _input_grad_nchw),
    StorageOrder.NHWC: _LayoutPasses(_view_nhwc, _reduce_nhwc, _input_grad_nhwc),
}


# =============================================================================
# Entry point
# =============================================================================

def _check_channel_vector(name: str, t: torch.Tensor, C: int) -> None:
    if t.dim() != 1 or t.shape[0] != C:
        raise ShapeMismatchError(
            f"{name} must have shape ({C},), got {tuple(t.shape)}"
        )


def _resize_like(out: Optional[torch.Tensor], like: torch.Tensor, name: str) -> torch.Tensor:
    """Mirror of ResizeLike: reuse the caller's buffer when given, else allocate."""
    if out is None:
        return torch.empty(like.shape, dtype=torch.float32, device=like.device)
    if not out.is_contiguous():
        raise ShapeMismatchError(f"Output buffer {name} must be contiguous")
    return out.resize_(like.shape)


def spatial_bn_backward(
    X: torch.Tensor,
    dY: torch.Tensor,
    scale: torch.Tensor,
    mean: torch.Tensor,
    inv_std: torch.Tensor,
    order=StorageOrder.NCHW,
    out: Optional[Grads] = None,
) -> Grads:
    """
    Gradient of spatial batch normalization.

    Args:
        X: Forward input, (N, C, H, W) for NCHW or (N, H, W, C) for NHWC
        dY: Gradient w.r.t. the forward output, same shape as X
        scale: Per-channel scale (C,)
        mean: Per-channel mean used by the forward pass (C,)
        inv_std: Per-channel inverse standard deviation used by the forward pass (C,)
        order: StorageOrder or its name
        out: Optional (dX, dScale, dBias) buffers. They are resized like
            (X, scale, scale) and fully overwritten.

    Returns:
        dX: Gradient w.r.t. X, shape of X
        dScale: Gradient w.r.t. scale (C,)
        dBias: Gradient w.r.t. bias (C,)
    """
    order = StorageOrder.parse(order)
    passes = _LAYOUTS.get(order)
    if passes is None:
        raise UnknownStorageOrderError(f"Unknown storage order: {order!r}")

    N, C, H, W = order.dims(X)
    if dY.shape != X.shape:
        raise ShapeMismatchError(
            f"dY shape {tuple(dY.shape)} does not match X shape {tuple(X.shape)}"
        )
    _check_channel_vector("scale", scale, C)
    _check_channel_vector("mean", mean, C)
    _check_channel_vector("inv_std", inv_std, C)

    logger.debug("SpatialBN backward: order=%s N=%d C=%d H=%d W=%d", order.value, N, C, H, W)

    dX_out, dScale_out, dBias_out = out if out is not None else (None, None, None)
    dX = _resize_like(dX_out, X, "dX")
    dScale = _resize_like(dScale_out, scale, "dScale")
    dBias = _resize_like(dBias_out, scale, "dBias")

    with torch.no_grad():
        # Compute in float32 regardless of input dtype
        X = X.contiguous().float()
        dY = dY.contiguous().float()
        scale = scale.float()
        mean = mean.float()
        inv_std = inv_std.float()

        X_v = passes.view(X, N, C, H, W)
        dY_v = passes.view(dY, N, C, H, W)
        dX_v = passes.view(dX, N, C, H, W)

        dBias.zero_()
        dScale.zero_()
        passes.reduce(X_v, dY_v, mean, inv_std, dBias, dScale)
        passes.input_grad(X_v, dY_v, scale, mean, inv_std, dBias, dScale, dX_v)

    return dX, dScale, dBias
