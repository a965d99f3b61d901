"""Storage order of 4-D feature maps."""

import enum
from typing import Tuple, Union

import torch

from ._errors import ShapeMismatchError, UnknownStorageOrderError


class StorageOrder(enum.Enum):
    """Physical layout of a feature map.

    NCHW keeps each channel's H*W plane contiguous (channel-major).
    NHWC keeps the C channels of each spatial position contiguous (channel-minor).
    """

    NCHW = "NCHW"
    NHWC = "NHWC"

    @classmethod
    def parse(cls, value: Union["StorageOrder", str]) -> "StorageOrder":
        """Accept an enum member or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                pass
        raise UnknownStorageOrderError(f"Unknown storage order: {value!r}")

    def dims(self, X: torch.Tensor) -> Tuple[int, int, int, int]:
        """Return (N, C, H, W) of a 4-D feature map laid out in this order."""
        if X.dim() != 4:
            raise ShapeMismatchError(
                f"Expected a 4-D feature map, got {X.dim()}-D tensor of shape {tuple(X.shape)}"
            )
        if self is StorageOrder.NCHW:
            N, C, H, W = X.shape
        else:
            N, H, W, C = X.shape
        return N, C, H, W
