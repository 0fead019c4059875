"""
BlazeFace network (MediaPipe front model, 128x128 input).

Based on code from https://github.com/hollance/BlazeFace-PyTorch and
https://github.com/google/mediapipe/

The pretrained weights have BatchNorm folded into the convolutions, so the
blocks carry biased convs and no BN layers. The detector heads are merged
into a single output tensor of shape (B, 896, 17):

    [:, :, 0]     score logit
    [:, :, 1:5]   box center x, center y, width, height (input pixels,
                  center relative to the anchor)
    [:, :, 5:17]  6 landmarks as (x, y) pairs relative to the anchor
"""
import logging
from typing import Any, List, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from humanvision.config import NUM_LANDMARKS

log = logging.getLogger("humanvision")


class BlazeBlock(nn.Module):
    """Depthwise + pointwise conv with a residual connection."""

    def __init__(self, in_channels: int, out_channels: int, kernel_size: int = 3, stride: int = 1):
        super().__init__()
        self.stride = stride
        self.kernel_size = kernel_size
        self.channel_pad = out_channels - in_channels

        # TFLite uses slightly different padding than PyTorch
        # on the depthwise conv layer when the stride is 2.
        if stride == 2:
            self.max_pool = nn.MaxPool2d(kernel_size=stride, stride=stride)
            padding = 0
        else:
            padding = (kernel_size - 1) // 2

        self.convs = nn.Sequential(
            nn.Conv2d(in_channels, in_channels, kernel_size, stride, padding, groups=in_channels, bias=True),
            nn.Conv2d(in_channels, out_channels, 1, 1, 0, bias=True),
        )
        self.act = nn.ReLU(inplace=True)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if self.stride == 2:
            if self.kernel_size == 3:
                h = F.pad(x, (0, 2, 0, 2), "constant", 0)
            else:
                h = F.pad(x, (1, 2, 1, 2), "constant", 0)
            x = self.max_pool(x)
        else:
            h = x

        if self.channel_pad > 0:
            x = F.pad(x, (0, 0, 0, 0, 0, self.channel_pad), "constant", 0)

        return self.act(self.convs(h) + x)


class BlazeFaceNet(nn.Module):
    """
    BlazeFace front detector.

    Two feature scales: 16x16 (88 channels, 2 anchors per cell) and
    8x8 (96 channels, 6 anchors per cell), 896 anchors in total.

    Input is (B, 3, 128, 128) normalized to [-1, 1].
    """
    num_anchors = 896
    num_coords = 4 + NUM_LANDMARKS * 2

    def __init__(self):
        super().__init__()

        self.input_size = 128

        # 128x128 -> 16x16
        self.backbone1 = nn.Sequential(
            nn.Conv2d(3, 24, 5, 2, 0, bias=True),
            nn.ReLU(inplace=True),

            BlazeBlock(24, 24),
            BlazeBlock(24, 28),
            BlazeBlock(28, 32, stride=2),
            BlazeBlock(32, 36),
            BlazeBlock(36, 42),
            BlazeBlock(42, 48, stride=2),
            BlazeBlock(48, 56),
            BlazeBlock(56, 64),
            BlazeBlock(64, 72),
            BlazeBlock(72, 80),
            BlazeBlock(80, 88),
        )

        # 16x16 -> 8x8
        self.backbone2 = nn.Sequential(
            BlazeBlock(88, 96, stride=2),
            BlazeBlock(96, 96),
            BlazeBlock(96, 96),
            BlazeBlock(96, 96),
            BlazeBlock(96, 96),
        )

        self.classifier_8 = nn.Conv2d(88, 2, 1, bias=True)
        self.classifier_16 = nn.Conv2d(96, 6, 1, bias=True)

        self.regressor_8 = nn.Conv2d(88, 2 * self.num_coords, 1, bias=True)
        self.regressor_16 = nn.Conv2d(96, 6 * self.num_coords, 1, bias=True)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        # TFLite "SAME" padding for the 5x5 stride 2 stem
        x = F.pad(x, (1, 2, 1, 2), "constant", 0)

        b = x.shape[0]

        x = self.backbone1(x)   # (b, 88, 16, 16)
        h = self.backbone2(x)   # (b, 96, 8, 8)

        c1 = self.classifier_8(x).permute(0, 2, 3, 1).reshape(b, -1, 1)       # (b, 512, 1)
        c2 = self.classifier_16(h).permute(0, 2, 3, 1).reshape(b, -1, 1)      # (b, 384, 1)
        c = torch.cat((c1, c2), dim=1)                                         # (b, 896, 1)

        r1 = self.regressor_8(x).permute(0, 2, 3, 1).reshape(b, -1, self.num_coords)   # (b, 512, 16)
        r2 = self.regressor_16(h).permute(0, 2, 3, 1).reshape(b, -1, self.num_coords)  # (b, 384, 16)
        r = torch.cat((r1, r2), dim=1)                                                  # (b, 896, 16)

        return torch.cat((c, r), dim=-1)                                                # (b, 896, 17)


def setup_device(backend: str = "auto") -> torch.device:
    """Resolve a backend name to a torch.device.

    'auto' picks CUDA when available, otherwise CPU. Asking for 'cuda'
    on a machine without it raises RuntimeError.
    """
    if backend == "auto":
        device = torch.device("cuda:0" if torch.cuda.is_available() else "cpu")
    elif backend == "cuda":
        if not torch.cuda.is_available():
            raise RuntimeError("Backend 'cuda' requested but CUDA is not available")
        device = torch.device("cuda:0")
    elif backend == "cpu":
        device = torch.device("cpu")
    else:
        raise ValueError(f"Unknown backend: {backend}")
    log.debug("Using device: %s", device)
    return device


def load_weights(
    model: nn.Module,
    weights_path: str,
    device: torch.device | None = None
) -> Tuple[List[str], List[str]]:
    """Load BlazeFace weights from either a raw state dict or a training checkpoint.

    Args:
        model: Network to load into
        weights_path: Path to .pth (state dict) or .ckpt (dict with 'model_state_dict')
        device: map_location for torch.load (default CPU)

    Returns:
        missing_keys: Keys in model not found in weights
        unexpected_keys: Keys in weights not found in model
    """
    checkpoint = torch.load(weights_path, map_location=device or "cpu", weights_only=True)
    return load_checkpoint(model, checkpoint, weights_path)


def load_checkpoint(
    model: nn.Module,
    checkpoint: Any,
    source: str
) -> Tuple[List[str], List[str]]:
    """Load an already deserialized state dict or training checkpoint into model.

    source is only used in log and error messages.
    """
    if isinstance(checkpoint, dict) and 'model_state_dict' in checkpoint:
        state_dict = checkpoint['model_state_dict']
        log.info("Loaded training checkpoint (epoch %s): %s", checkpoint.get('epoch', '?'), source)
    elif isinstance(checkpoint, dict):
        state_dict = checkpoint
        log.info("Loaded weights: %s", source)
    else:
        raise ValueError(f"Unsupported weights format in {source}: {type(checkpoint).__name__}")

    result = model.load_state_dict(state_dict, strict=False)
    if result.missing_keys:
        log.warning("Missing keys: %s", result.missing_keys)
    if result.unexpected_keys:
        log.warning("Unexpected keys: %s", result.unexpected_keys)
    return result.missing_keys, result.unexpected_keys
