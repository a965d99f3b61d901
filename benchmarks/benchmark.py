#!/usr/bin/env python3
"""Benchmark script comparing the NCHW / NHWC gradient paths vs PyTorch autograd.

Usage:
    python benchmarks/benchmark.py
    python benchmarks/benchmark.py --batch 8 --channels 64 --size 28

"""

import torch
import time
from typing import Callable, Tuple
import argparse
import torch.nn.functional as F

from spatial_bn import spatial_bn_backward


def benchmark_fn(
    fn: Callable,
    args: Tuple,
    warmup: int = 3,
    repeats: int = 20,
) -> float:
    """Benchmark a function and return mean time in milliseconds."""
    # Warmup
    for _ in range(warmup):
        fn(*args)

    # Timed runs
    start = time.perf_counter()
    for _ in range(repeats):
        fn(*args)
    end = time.perf_counter()

    return (end - start) / repeats * 1000  # Convert to ms


def _make_case(batch: int, channels: int, size: int, eps: float = 1e-5):
    X = torch.randn(batch, channels, size, size)
    dY = torch.randn(batch, channels, size, size)
    scale = torch.rand(channels) + 0.5
    bias = torch.zeros(channels)
    mean = X.mean(dim=(0, 2, 3))
    inv_std = 1.0 / torch.sqrt(X.var(dim=(0, 2, 3), unbiased=False) + eps)
    return X, dY, scale, bias, mean, inv_std


def _autograd_backward(X, dY, scale, bias):
    X = X.detach().requires_grad_(True)
    scale = scale.detach().requires_grad_(True)
    bias = bias.detach().requires_grad_(True)
    Y = F.batch_norm(X, None, None, scale, bias, training=True)
    return torch.autograd.grad(Y, (X, scale, bias), dY)


def benchmark_backward(batch: int, channels: int, size: int) -> Tuple[float, float, float]:
    """Benchmark the NCHW path, the NHWC path and the autograd baseline."""
    X, dY, scale, bias, mean, inv_std = _make_case(batch, channels, size)
    X_nhwc = X.permute(0, 2, 3, 1).contiguous()
    dY_nhwc = dY.permute(0, 2, 3, 1).contiguous()

    nchw_time = benchmark_fn(
        lambda x, dy: spatial_bn_backward(x, dy, scale, mean, inv_std, "NCHW"), (X, dY)
    )
    nhwc_time = benchmark_fn(
        lambda x, dy: spatial_bn_backward(x, dy, scale, mean, inv_std, "NHWC"), (X_nhwc, dY_nhwc)
    )
    autograd_time = benchmark_fn(_autograd_backward, (X, dY, scale, bias))

    return nchw_time, nhwc_time, autograd_time


def check_agreement(batch: int, channels: int, size: int) -> float:
    """Max absolute difference of dX between the NCHW path and autograd."""
    X, dY, scale, bias, mean, inv_std = _make_case(batch, channels, size)
    dX, _, _ = spatial_bn_backward(X, dY, scale, mean, inv_std, "NCHW")
    dX_ref, _, _ = _autograd_backward(X, dY, scale, bias)
    return (dX - dX_ref).abs().max().item()


def main():
    parser = argparse.ArgumentParser(description="Benchmark SpatialBN gradient")
    parser.add_argument("--batch", type=int, default=None)
    parser.add_argument("--channels", type=int, default=None)
    parser.add_argument("--size", type=int, default=None)
    parser.add_argument("--threads", type=int, default=1)
    args = parser.parse_args()

    torch.manual_seed(0)
    torch.set_num_threads(args.threads)

    if args.batch and args.channels and args.size:
        configs = [(args.batch, args.channels, args.size)]
    else:
        configs = [
            (8, 16, 32),
            (8, 64, 28),
            (16, 64, 56),
            (32, 128, 14),
            (32, 256, 7),
        ]

    print("=" * 72)
    print("SpatialBN gradient benchmark (CPU, float32)")
    print("=" * 72)
    print(f"{'N':>4} {'C':>5} {'HxW':>7} | {'NCHW (ms)':>10} {'NHWC (ms)':>10} {'autograd (ms)':>14} | {'max |dX diff|':>13}")
    print("-" * 72)

    for batch, channels, size in configs:
        nchw, nhwc, ref = benchmark_backward(batch, channels, size)
        diff = check_agreement(batch, channels, size)
        print(f"{batch:>4} {channels:>5} {f'{size}x{size}':>7} | {nchw:>10.3f} {nhwc:>10.3f} {ref:>14.3f} | {diff:>13.2e}")


if __name__ == "__main__":
    main()
