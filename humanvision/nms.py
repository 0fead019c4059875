"""
Non-maximum suppression for face detections.

Two strategies, both taking [N, 4] boxes in [x1, y1, x2, y2] format:
- Hard NMS (torchvision.ops.nms): keep the best box of each overlapping
  cluster, drop the rest.
- Weighted NMS: the BlazeFace blending strategy, where each cluster is
  replaced by the score-weighted mean of its members.
"""
from __future__ import annotations

from typing import Optional, Tuple

import torch
from torchvision.ops import nms


def iou(box: torch.Tensor, other_boxes: torch.Tensor) -> torch.Tensor:
    """
    IoU between one box and a set of boxes.

    Args:
        box: [4] box [x1, y1, x2, y2]
        other_boxes: [N, 4] boxes

    Returns:
        [N] IoU values (0 where the union is empty)
    """
    x1 = torch.maximum(box[0], other_boxes[:, 0])
    y1 = torch.maximum(box[1], other_boxes[:, 1])
    x2 = torch.minimum(box[2], other_boxes[:, 2])
    y2 = torch.minimum(box[3], other_boxes[:, 3])

    inter_area = torch.clamp(x2 - x1, min=0) * torch.clamp(y2 - y1, min=0)
    area = (box[2] - box[0]) * (box[3] - box[1])
    other_areas = (other_boxes[:, 2] - other_boxes[:, 0]) * (other_boxes[:, 3] - other_boxes[:, 1])
    union_area = area + other_areas - inter_area

    ious = torch.where(union_area > 0, inter_area / union_area.clamp(min=1e-12), torch.zeros_like(union_area))
    return torch.nan_to_num(ious, nan=0.0, posinf=0.0, neginf=0.0)


def _candidates(scores: torch.Tensor, score_threshold: float) -> torch.Tensor:
    """Indices of scores strictly above the threshold."""
    return torch.nonzero(scores > score_threshold, as_tuple=False).flatten()


def non_max_suppression(
    boxes: torch.Tensor,
    scores: torch.Tensor,
    max_output: int,
    iou_threshold: float,
    score_threshold: float
) -> torch.Tensor:
    """Hard NMS with a score floor and an output cap.

    Args:
        boxes: [N, 4] boxes [x1, y1, x2, y2]
        scores: [N] confidences
        max_output: maximum number of indices returned
        iou_threshold: a box overlapping a kept box by more than this is dropped
        score_threshold: boxes scoring at or below this are never considered

    Returns:
        int64 tensor of indices into boxes, highest score first
    """
    if boxes.numel() == 0 or max_output <= 0:
        return torch.zeros((0,), dtype=torch.long, device=boxes.device)

    candidates = _candidates(scores, score_threshold)
    if candidates.numel() == 0:
        return candidates

    keep = nms(boxes[candidates].float(), scores[candidates].float(), iou_threshold)
    return candidates[keep[:max_output]]


def weighted_non_max_suppression(
    boxes: torch.Tensor,
    scores: torch.Tensor,
    max_output: int,
    iou_threshold: float,
    score_threshold: float,
    coords: Optional[torch.Tensor] = None
) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """The alternative NMS method from the BlazeFace paper:

    "We replace the suppression algorithm with a blending strategy that
    estimates the regression parameters of a bounding box as a weighted
    mean between the overlapping predictions."

    MediaPipe assigns the score of the most confident detection to the
    blended detection; here the cluster's average score is used.

    Args:
        boxes: [N, 4] boxes [x1, y1, x2, y2] used for overlap tests
        scores: [N] confidences
        max_output: maximum number of clusters returned
        iou_threshold: boxes overlapping the cluster head by more than this join it
        score_threshold: boxes scoring at or below this are never considered
        coords: optional [N, D] values to blend instead of the boxes
                (e.g. boxes concatenated with landmarks)

    Returns:
        keep: [K] index of each cluster's highest-scoring member
        blended: [K, D] score-weighted mean of coords (or boxes) per cluster
        blended_scores: [K] mean score per cluster
    """
    if coords is None:
        coords = boxes
    empty = (
        torch.zeros((0,), dtype=torch.long, device=boxes.device),
        torch.zeros((0, coords.shape[-1]), dtype=coords.dtype, device=coords.device),
        torch.zeros((0,), dtype=scores.dtype, device=scores.device),
    )
    if boxes.numel() == 0 or max_output <= 0:
        return empty

    candidates = _candidates(scores, score_threshold)
    if candidates.numel() == 0:
        return empty

    # Sort the candidates from highest to lowest score.
    remaining = candidates[torch.argsort(scores[candidates], descending=True)]

    keep, blended, blended_scores = [], [], []
    while len(remaining) > 0 and len(keep) < max_output:
        head = remaining[0]

        # other boxes include the head itself, so the mask is never empty
        ious = iou(boxes[head], boxes[remaining])
        mask = ious > iou_threshold
        mask[0] = True
        overlapping = remaining[mask]
        remaining = remaining[~mask]

        weights = scores[overlapping].unsqueeze(-1)
        total_score = weights.sum()
        keep.append(head)
        blended.append((coords[overlapping] * weights).sum(dim=0) / total_score)
        blended_scores.append(total_score / len(overlapping))

    return torch.stack(keep), torch.stack(blended), torch.stack(blended_scores)
