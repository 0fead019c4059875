"""
Shared test fixtures: a stub network with a known output.
"""
import torch
import torch.nn as nn

from humanvision.config import DEFAULT_CONFIG, merge_config

BACKGROUND_LOGIT = -10.0


class FixedOutputNet(nn.Module):
    """Returns the same (1, 896, 17) prediction for any input and records inputs."""

    def __init__(self, prediction: torch.Tensor):
        super().__init__()
        self.register_buffer('prediction', prediction)
        self.inputs = []

    def forward(self, x):
        self.inputs.append(x.detach().clone())
        return self.prediction.unsqueeze(0)


def make_prediction() -> torch.Tensor:
    """Two well separated faces on a background of low logits.

    Row 0   anchor (4, 4):    logit 5, box 8x8 centered on the anchor -> [0, 0, 8, 8]
    Row 600 anchor (104, 24): logit 3, box 16x16 on the anchor -> [96, 16, 112, 32],
            first landmark offset (1, 2)
    """
    prediction = torch.zeros(896, 17)
    prediction[:, 0] = BACKGROUND_LOGIT

    prediction[0, 0] = 5.0
    prediction[0, 3:5] = torch.tensor([8.0, 8.0])

    prediction[600, 0] = 3.0
    prediction[600, 3:5] = torch.tensor([16.0, 16.0])
    prediction[600, 5:7] = torch.tensor([1.0, 2.0])
    return prediction


def make_config(**detector) -> dict:
    return merge_config(DEFAULT_CONFIG, {'backend': 'cpu', 'face': {'detector': detector}})
