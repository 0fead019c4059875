"""
Box helpers for the face detector.

Boxes are [x1, y1, x2, y2] rows (top-left corner, bottom-right corner).
Raw detector rows are laid out as:

    [logit, cx, cy, w, h, lm0x, lm0y, ..., lm5x, lm5y]

with center offsets, sizes and landmarks all in input pixels relative to
the row's anchor.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence, Union

import torch


@dataclass
class Box:
    """A set of boxes backed by one [N, 4] tensor."""
    start_end: torch.Tensor

    @property
    def start_point(self) -> torch.Tensor:
        """[N, 2] top-left corners."""
        return self.start_end[:, 0:2]

    @property
    def end_point(self) -> torch.Tensor:
        """[N, 2] bottom-right corners."""
        return self.start_end[:, 2:4]


def create_box(start_end: Union[torch.Tensor, Sequence]) -> Box:
    """Wrap [N, 4] (or a single [4]) corner coordinates in a Box."""
    if not isinstance(start_end, torch.Tensor):
        start_end = torch.tensor(start_end, dtype=torch.float32)
    if start_end.dim() == 1:
        start_end = start_end.unsqueeze(0)
    return Box(start_end)


def scale_box(box: Box, factors: Union[torch.Tensor, Sequence[float]]) -> Box:
    """Multiply both corners by [sx, sy]."""
    factors = torch.as_tensor(factors, dtype=box.start_end.dtype, device=box.start_end.device)
    starts = box.start_point * factors
    ends = box.end_point * factors
    return create_box(torch.cat([starts, ends], dim=1))


def decode_bounds(
    box_outputs: torch.Tensor,
    anchors: torch.Tensor,
    input_size: torch.Tensor,
    normalized: bool = False
) -> torch.Tensor:
    """Convert raw [N, 17] detector rows into [N, 4] corner boxes.

    centers = raw center offset + anchor, sizes = raw size; both corners are
    half a size away from the center. Coordinates are in input pixels, or in
    [0, 1] relative to input_size when normalized is set.

    Args:
        box_outputs: [N, >=5] raw detector rows
        anchors: [N, 2] anchor centers in pixels
        input_size: [2] (width, height) of the detector input
        normalized: return coordinates divided by input_size
    """
    centers = box_outputs[:, 1:3] + anchors
    box_sizes = box_outputs[:, 3:5]

    centers_normalized = centers / input_size
    half_box_size = box_sizes / input_size / 2
    starts = centers_normalized - half_box_size
    ends = centers_normalized + half_box_size
    if not normalized:
        starts = starts * input_size
        ends = ends * input_size
    return torch.cat([starts, ends], dim=1)


def scale_box_from_prediction(
    face: Union[Dict[str, Box], Box],
    scale_factor: Sequence[float]
) -> torch.Tensor:
    """Scale a predicted face box to source image pixels; returns a [4] tensor."""
    box = face['box'] if isinstance(face, dict) else face
    return scale_box(box, scale_factor).start_end.squeeze(0)


def box_to_xywh(start_end: Sequence[float]) -> list[float]:
    """[x1, y1, x2, y2] -> [x, y, width, height]."""
    x1, y1, x2, y2 = [float(v) for v in start_end]
    return [x1, y1, x2 - x1, y2 - y1]


def clip_box(start_end: Sequence[float], width: float, height: float) -> list[float]:
    """Clamp [x1, y1, x2, y2] to the image rectangle."""
    x1, y1, x2, y2 = [float(v) for v in start_end]
    return [
        min(max(x1, 0.0), width),
        min(max(y1, 0.0), height),
        min(max(x2, 0.0), width),
        min(max(y2, 0.0), height),
    ]
