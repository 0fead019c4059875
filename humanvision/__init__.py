# __init__.py
"""
humanvision: face detection with the BlazeFace network on PyTorch.

Main Components:
- Human: library entry point (config, model loading, detect, warmup)
- BlazeFaceModel: face detector adapter (anchors, box decoding, NMS)
- BlazeFaceNet: the detector network

Quick Start:
    from humanvision import Human
    human = Human({'modelBasePath': 'model_weights/'})
    result = human.detect(image_rgb)
"""

from .version import __version__

# Configuration
from .config import DEFAULT_CONFIG, ANCHORS_CONFIG, NUM_LANDMARKS, merge_config, validate_config

# Anchors and boxes
from .anchors import generate_anchors, anchors_to_tensor
from .box import Box, create_box, scale_box, decode_bounds, scale_box_from_prediction
from .nms import non_max_suppression, weighted_non_max_suppression

# Model
from .blazeface import BlazeFaceNet, load_checkpoint, load_weights, setup_device
from .facedetector import BlazeFaceModel, load

# Facade
from .human import Human


__all__ = [
    '__version__',
    # Config
    'DEFAULT_CONFIG',
    'ANCHORS_CONFIG',
    'NUM_LANDMARKS',
    'merge_config',
    'validate_config',
    # Anchors / boxes
    'generate_anchors',
    'anchors_to_tensor',
    'Box',
    'create_box',
    'scale_box',
    'decode_bounds',
    'scale_box_from_prediction',
    'non_max_suppression',
    'weighted_non_max_suppression',
    # Model
    'BlazeFaceNet',
    'load_weights',
    'load_checkpoint',
    'setup_device',
    'BlazeFaceModel',
    'load',
    # Facade
    'Human',
]
