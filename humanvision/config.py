# config.py
"""
Configuration for the humanvision library.

Nested dicts, merged over DEFAULT_CONFIG. Keys follow the layout used by
the detector adapter:

    config['face']['detector']['inputSize']
"""
import copy
import os
from typing import Any, Dict

# =============================================================================
# BlazeFace Front anchors (128x128 input)
# =============================================================================
# Layer 1 (16x16, stride 8): 2 anchors per cell = 512 anchors
# Layer 2 (8x8, stride 16): 6 anchors per cell = 384 anchors
# Total: 896 anchors
ANCHORS_CONFIG = {
    'strides': [8, 16],
    'anchors': [2, 6],
}

# Right eye, left eye, nose tip, mouth center, right ear, left ear
NUM_LANDMARKS = 6

# Total downsampling of the network: three stride-2 blocks after the stride-2 stem
INPUT_SIZE_MULTIPLE = 16

BACKENDS = ('auto', 'cpu', 'cuda')
NMS_METHODS = ('hard', 'weighted')
WARMUP_MODES = ('none', 'face', 'full')

# =============================================================================
# Library defaults
# =============================================================================
DEFAULT_CONFIG: Dict[str, Any] = {
    'backend': 'auto',
    'modelBasePath': 'model_weights/',
    'debug': False,
    'warmup': 'face',
    'filter': {
        'enabled': True,
        'flip': False,
    },
    'face': {
        'enabled': True,
        'detector': {
            'enabled': True,
            'modelPath': 'blazeface.pth',
            'inputSize': 128,
            'maxFaces': 10,
            'iouThreshold': 0.1,
            'scoreThreshold': 0.2,
            'nms': 'hard',
        },
    },
}


def merge_config(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge config dicts left to right. Later values win.

    Nested dicts are merged key by key, anything else is replaced. None
    entries are skipped so optional user configs can be passed straight in.
    """
    merged: Dict[str, Any] = {}
    for cfg in configs:
        if cfg is None:
            continue
        if not isinstance(cfg, dict):
            raise TypeError(f"Config must be a dict, got {type(cfg).__name__}")
        for key, value in cfg.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = merge_config(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Check value ranges; raises ValueError on the first bad entry."""
    backend = config.get('backend', 'auto')
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend} (expected one of {BACKENDS})")

    warmup = config.get('warmup', 'none')
    if warmup not in WARMUP_MODES:
        raise ValueError(f"Unknown warmup mode: {warmup} (expected one of {WARMUP_MODES})")

    detector = config.get('face', {}).get('detector', {})
    if detector.get('inputSize', 1) <= 0:
        raise ValueError(f"face.detector.inputSize must be positive, got {detector['inputSize']}")
    if detector.get('inputSize', INPUT_SIZE_MULTIPLE) % INPUT_SIZE_MULTIPLE != 0:
        raise ValueError(
            f"face.detector.inputSize must be a multiple of {INPUT_SIZE_MULTIPLE}, got {detector['inputSize']}"
        )
    if detector.get('maxFaces', 1) <= 0:
        raise ValueError(f"face.detector.maxFaces must be positive, got {detector['maxFaces']}")
    for key in ('iouThreshold', 'scoreThreshold'):
        value = detector.get(key, 0.0)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"face.detector.{key} must be in [0, 1], got {value}")
    if detector.get('nms', 'hard') not in NMS_METHODS:
        raise ValueError(f"Unknown NMS method: {detector['nms']} (expected one of {NMS_METHODS})")

    return config


def resolve_model_path(config: Dict[str, Any], model_path: str) -> str:
    """Join a relative model path onto modelBasePath.

    URLs and absolute paths are returned unchanged. A 'file://' prefix on
    either part is stripped.
    """
    if model_path.startswith(('http://', 'https://')):
        return model_path
    model_path = _strip_file_scheme(model_path)
    if os.path.isabs(model_path):
        return model_path
    base = _strip_file_scheme(config.get('modelBasePath', ''))
    return os.path.join(base, model_path)


def _strip_file_scheme(path: str) -> str:
    return path[len('file://'):] if path.startswith('file://') else path
