"""
Human: library entry point.

Holds the merged configuration and the loaded models, and turns detector
output into result dicts:

    human = Human({'face': {'detector': {'maxFaces': 1}}})
    human.load()
    result = human.detect(image_rgb)
    result['face'][0]['box']      # [x, y, width, height] in pixels
"""
import logging
import time
from typing import Any, Dict, List, Optional, Union

import numpy as np
import torch

from humanvision import facedetector
from humanvision.blazeface import setup_device
from humanvision.box import box_to_xywh, clip_box
from humanvision.config import DEFAULT_CONFIG, merge_config, validate_config
from humanvision.image import apply_filter
from humanvision.version import __version__

log = logging.getLogger("humanvision")

# synthetic warmup inputs, (height, width)
WARMUP_SIZES = {
    'face': (128, 128),
    'full': (480, 640),
}


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class Human:
    """
    Face detection pipeline with a layered configuration.

    Args:
        config: Optional overrides merged over DEFAULT_CONFIG
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.version = __version__
        self.config = validate_config(merge_config(DEFAULT_CONFIG, config))
        self.device: Optional[torch.device] = None
        self.models: Dict[str, Any] = {'face': None}
        self.performance: Dict[str, float] = {}
        if self.config['debug']:
            log.setLevel(logging.DEBUG)

    def _update_config(self, user_config: Optional[Dict[str, Any]]) -> None:
        if user_config:
            backend = self.config['backend']
            self.config = validate_config(merge_config(self.config, user_config))
            if self.device is not None and self.config['backend'] != backend:
                log.warning(
                    "Backend change to %s ignored: device already set to %s",
                    self.config['backend'], self.device
                )
            if self.models['face'] is not None:
                self.models['face'].configure(self.config)

    def _pending_models(self) -> List[str]:
        """Enabled models that are not loaded yet."""
        face = self.config['face']
        if face['enabled'] and face['detector']['enabled'] and self.models['face'] is None:
            return ['face']
        return []

    def load(self, user_config: Optional[Dict[str, Any]] = None) -> None:
        """Load every enabled model that is not loaded yet.

        performance['load'] is only updated when a model was actually loaded.
        """
        self._update_config(user_config)
        if self.device is None:
            self.device = setup_device(self.config['backend'])

        pending = self._pending_models()
        if not pending:
            return
        start = time.perf_counter()
        if 'face' in pending:
            self.models['face'] = facedetector.load(self.config)
            log.debug("Load model: face detector %s", self.config['face']['detector']['modelPath'])
        self.performance['load'] = _elapsed_ms(start)

    def detect(
        self,
        input: Union[np.ndarray, torch.Tensor],
        user_config: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Run the enabled models on one image.

        Args:
            input: RGB image as numpy array (H, W, 3) or tensor (3, H, W) / (1, 3, H, W)
            user_config: Optional overrides merged into the active config

        Returns:
            Dictionary containing:
                - 'face': list of {'id', 'score', 'box', 'box_raw', 'landmarks'}
                - 'persons': list of {'id', 'face', 'box'}, one per face
                - 'performance': stage timings in milliseconds
        """
        self._update_config(user_config)
        if self.device is None or self._pending_models():
            self.load()
        start = time.perf_counter()
        performance: Dict[str, float] = {}

        height, width = (input.shape[0], input.shape[1]) if isinstance(input, np.ndarray) else input.shape[-2:]
        height, width = int(height), int(width)

        stage = time.perf_counter()
        image = apply_filter(input, self.config['filter'])
        performance['filter'] = _elapsed_ms(stage)

        faces: List[Dict[str, Any]] = []
        if self.config['face']['enabled'] and self.models['face'] is not None:
            stage = time.perf_counter()
            predictions = self.models['face'].estimate_faces(image)
            faces = [
                self._face_result(i, prediction, width, height)
                for i, prediction in enumerate(predictions)
            ]
            performance['face'] = _elapsed_ms(stage)

        persons = [
            {'id': face['id'], 'face': face, 'box': list(face['box'])}
            for face in faces
        ]

        performance['total'] = _elapsed_ms(start)
        self.performance.update(performance)
        log.debug("Detect: %d faces in %.1f ms", len(faces), performance['total'])
        return {'face': faces, 'persons': persons, 'performance': performance}

    @staticmethod
    def _face_result(
        face_id: int,
        prediction: Dict[str, Any],
        width: int,
        height: int
    ) -> Dict[str, Any]:
        start_end = clip_box(prediction['top_left'] + prediction['bottom_right'], width, height)
        box = box_to_xywh(start_end)
        return {
            'id': face_id,
            'score': prediction['probability'],
            'box': box,
            'box_raw': [box[0] / width, box[1] / height, box[2] / width, box[3] / height],
            'landmarks': prediction['landmarks'],
        }

    def warmup(self, user_config: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Run one detection on a synthetic image so first real calls are not slowed down.

        The image size follows config['warmup'] ('face' or 'full'); 'none' skips.
        """
        self._update_config(user_config)
        mode = self.config['warmup']
        if mode == 'none':
            return None
        start = time.perf_counter()
        height, width = WARMUP_SIZES[mode]
        image = np.full((height, width, 3), 128, dtype=np.uint8)
        result = self.detect(image)
        self.performance['warmup'] = _elapsed_ms(start)
        log.info("Warmup: %s %dx%d %.1f ms", mode, width, height, self.performance['warmup'])
        return result

    def memory(self) -> Dict[str, Any]:
        """Tensor memory held by the loaded models (and the CUDA allocator when in use)."""
        tensors = 0
        num_bytes = 0
        for model in self.models.values():
            if model is None:
                continue
            for t in list(model.blazeface_model.parameters()) + list(model.blazeface_model.buffers()):
                tensors += 1
                num_bytes += t.numel() * t.element_size()
        state = {
            'device': str(self.device) if self.device is not None else None,
            'tensors': tensors,
            'bytes': num_bytes,
        }
        if self.device is not None and self.device.type == 'cuda':
            state['allocated'] = torch.cuda.memory_allocated(self.device)
            state['reserved'] = torch.cuda.memory_reserved(self.device)
        return state
