"""
Anchor generation for the BlazeFace detector.

Anchors are centers in input-pixel space, one [x, y] pair per predicted box.
Layers are emitted in stride order and each grid is walked row-major, which
matches the order of the network's concatenated outputs:

    stride 8  -> 16x16 grid * 2 anchors = 512
    stride 16 ->  8x8  grid * 6 anchors = 384
    total                               = 896  (128x128 input)
"""
from __future__ import annotations

from typing import Dict, List, Sequence

import torch

from humanvision.config import ANCHORS_CONFIG


def generate_anchors(
    width: int,
    height: int,
    output_spec: Dict[str, Sequence[int]] = ANCHORS_CONFIG
) -> List[List[float]]:
    """
    Generate anchor centers for every output cell of the detector.

    Grids use ceiling division, so an input that is not a multiple of the
    stride still gets a cell covering its last partial row/column.

    Args:
        width: Detector input width in pixels
        height: Detector input height in pixels
        output_spec: {'strides': [...], 'anchors': [...]} with one entry per
                     output layer (anchors = anchors per cell)

    Returns:
        List of [x_center, y_center] pairs in pixels
    """
    strides = output_spec['strides']
    anchors_per_cell = output_spec['anchors']
    if len(strides) != len(anchors_per_cell):
        raise ValueError(
            f"strides and anchors must have the same length, "
            f"got {len(strides)} and {len(anchors_per_cell)}"
        )

    anchors = []
    for stride, anchors_num in zip(strides, anchors_per_cell):
        grid_rows = (height + stride - 1) // stride
        grid_cols = (width + stride - 1) // stride
        for grid_y in range(grid_rows):
            anchor_y = stride * (grid_y + 0.5)
            for grid_x in range(grid_cols):
                anchor_x = stride * (grid_x + 0.5)
                for _ in range(anchors_num):
                    anchors.append([anchor_x, anchor_y])
    return anchors


def count_anchors(
    width: int,
    height: int,
    output_spec: Dict[str, Sequence[int]] = ANCHORS_CONFIG
) -> int:
    """Number of anchors generate_anchors would produce, without building them."""
    total = 0
    for stride, anchors_num in zip(output_spec['strides'], output_spec['anchors']):
        total += ((height + stride - 1) // stride) * ((width + stride - 1) // stride) * anchors_num
    return total


def anchors_to_tensor(
    anchors: List[List[float]],
    device: torch.device | None = None
) -> torch.Tensor:
    """[N, 2] float32 tensor of anchor centers."""
    if len(anchors) == 0:
        return torch.zeros((0, 2), dtype=torch.float32, device=device)
    return torch.tensor(anchors, dtype=torch.float32, device=device)
