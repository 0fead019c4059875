"""
Face detector adapter.

Turns the BlazeFace network's raw (1, 896, 17) output into face boxes and
landmarks in source-image pixels.

Usage:
    from humanvision.facedetector import load

    detector = load(config)
    faces = detector.estimate_faces(image_rgb)
    # [{'top_left': [x, y], 'bottom_right': [x, y],
    #   'landmarks': [[x, y] * 6], 'probability': p}, ...]
"""
import logging
import os
from typing import Any, Dict, List, Union

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from humanvision.anchors import anchors_to_tensor, generate_anchors
from humanvision.blazeface import BlazeFaceNet, load_checkpoint, load_weights, setup_device
from humanvision.box import create_box, decode_bounds, scale_box_from_prediction
from humanvision.config import ANCHORS_CONFIG, NUM_LANDMARKS, resolve_model_path
from humanvision.image import image_to_tensor
from humanvision.nms import non_max_suppression, weighted_non_max_suppression

log = logging.getLogger("humanvision")


def _model_device(model: nn.Module) -> torch.device:
    try:
        return next(model.parameters()).device
    except StopIteration:
        return torch.device("cpu")


class BlazeFaceModel:
    """
    Wraps a BlazeFace network with anchor decoding and NMS.

    Args:
        model: Network returning (1, num_anchors, 17) for a (1, 3, S, S) input
        config: Library config; reads config['face']['detector']
    """

    def __init__(self, model: nn.Module, config: Dict[str, Any]):
        self.blazeface_model = model
        self.device = _model_device(model)
        self.width = None
        self.height = None
        self.configure(config)

    def configure(self, config: Dict[str, Any]) -> None:
        """Apply detector settings; anchors are rebuilt only when inputSize changes."""
        detector = config['face']['detector']
        self.max_faces = detector['maxFaces']
        self.iou_threshold = detector['iouThreshold']
        self.score_threshold = detector['scoreThreshold']
        self.nms_method = detector.get('nms', 'hard')

        if detector['inputSize'] != self.width:
            self.width = detector['inputSize']
            self.height = detector['inputSize']
            self.anchors_data = generate_anchors(self.width, self.height, ANCHORS_CONFIG)
            self.anchors = anchors_to_tensor(self.anchors_data, device=self.device)
            self.input_size_data = [self.width, self.height]
            self.input_size = torch.tensor(self.input_size_data, dtype=torch.float32, device=self.device)

    @torch.no_grad()
    def predict(self, image: torch.Tensor) -> torch.Tensor:
        """Resize, normalize to [-1, 1] and run the network; returns (num_anchors, 17)."""
        resized = F.interpolate(image, size=(self.height, self.width), mode='bilinear', align_corners=False)
        normalized = (resized / 255.0 - 0.5) * 2
        prediction = self.blazeface_model(normalized)
        if isinstance(prediction, (list, tuple)):
            prediction = prediction[0]
        prediction = prediction.squeeze(0)
        if prediction.shape[0] != len(self.anchors_data):
            raise ValueError(
                f"Model produced {prediction.shape[0]} rows but {len(self.anchors_data)} "
                f"anchors were generated for input size {self.width}"
            )
        return prediction

    @torch.no_grad()
    def get_bounding_boxes(self, input_image: torch.Tensor) -> Dict[str, Any]:
        """Detect faces in a (1, 3, H, W) float image with values in [0, 255].

        Returns:
            Dictionary containing:
                - 'boxes': list of {'box', 'landmarks', 'probability', 'anchor'}
                  in detector input pixels, landmarks relative to the anchor
                - 'scale_factor': [W / input_width, H / input_height]
        """
        input_image = input_image.to(self.device).float()
        prediction = self.predict(input_image)
        boxes = decode_bounds(prediction, self.anchors, self.input_size)
        scores = torch.sigmoid(prediction[:, 0])
        landmarks = prediction[:, 5:].reshape(-1, NUM_LANDMARKS, 2)

        annotated_boxes = []
        if self.nms_method == 'weighted':
            # blend absolute landmark positions, anchors differ within a cluster
            absolute = (landmarks + self.anchors.unsqueeze(1)).reshape(-1, NUM_LANDMARKS * 2)
            keep, blended, blended_scores = weighted_non_max_suppression(
                boxes, scores, self.max_faces, self.iou_threshold, self.score_threshold,
                coords=torch.cat([boxes, absolute], dim=1)
            )
            for i, box_index in enumerate(keep.tolist()):
                anchor = self.anchors_data[box_index]
                annotated_boxes.append({
                    'box': create_box(blended[i, :4]),
                    'landmarks': blended[i, 4:].reshape(NUM_LANDMARKS, 2) - self.anchors[box_index],
                    'probability': blended_scores[i:i + 1],
                    'anchor': anchor,
                })
        else:
            keep = non_max_suppression(
                boxes, scores, self.max_faces, self.iou_threshold, self.score_threshold
            )
            for box_index in keep.tolist():
                annotated_boxes.append({
                    'box': create_box(boxes[box_index]),
                    'landmarks': landmarks[box_index],
                    'probability': scores[box_index:box_index + 1],
                    'anchor': self.anchors_data[box_index],
                })

        return {
            'boxes': annotated_boxes,
            'scale_factor': [
                input_image.shape[3] / self.input_size_data[0],
                input_image.shape[2] / self.input_size_data[1],
            ],
        }

    def estimate_faces(
        self,
        input: Union[np.ndarray, torch.Tensor],
        return_tensors: bool = False,
        annotate_boxes: bool = True
    ) -> List[Dict[str, Any]]:
        """
        Run face detection on an image.

        Args:
            input: RGB image as numpy array (H, W, 3) or tensor (3, H, W) / (1, 3, H, W),
                   values in [0, 255]
            return_tensors: keep results as tensors instead of Python lists
            annotate_boxes: include landmarks and probability

        Returns:
            List of faces, each with 'top_left' and 'bottom_right' in source image
            pixels, plus 'landmarks' (6 x [x, y]) and 'probability' when annotating.
        """
        image = image_to_tensor(input)
        result = self.get_bounding_boxes(image)
        scale_factor = result['scale_factor']
        scale_x, scale_y = scale_factor

        faces = []
        for face in result['boxes']:
            scaled_box = scale_box_from_prediction(face, scale_factor)
            if return_tensors:
                normalized_face = {
                    'top_left': scaled_box[0:2],
                    'bottom_right': scaled_box[2:4],
                }
                if annotate_boxes:
                    anchor = torch.tensor(face['anchor'], dtype=torch.float32, device=self.device)
                    factors = torch.tensor(scale_factor, dtype=torch.float32, device=self.device)
                    normalized_face['landmarks'] = (face['landmarks'] + anchor) * factors
                    normalized_face['probability'] = face['probability']
            else:
                box_data = scaled_box.tolist()
                normalized_face = {
                    'top_left': box_data[0:2],
                    'bottom_right': box_data[2:4],
                }
                if annotate_boxes:
                    anchor = face['anchor']
                    normalized_face['landmarks'] = [
                        [(x + anchor[0]) * scale_x, (y + anchor[1]) * scale_y]
                        for x, y in face['landmarks'].tolist()
                    ]
                    normalized_face['probability'] = float(face['probability'][0])
            faces.append(normalized_face)

        return faces


def load(config: Dict[str, Any]) -> BlazeFaceModel:
    """Build the BlazeFace network, load its weights and wrap it in a BlazeFaceModel.

    face.detector.modelPath may be a local path (resolved against modelBasePath)
    or an http(s) URL, which is fetched through the torch.hub cache.
    """
    model_path = resolve_model_path(config, config['face']['detector']['modelPath'])
    device = setup_device(config.get('backend', 'auto'))

    model = BlazeFaceNet()
    if model_path.startswith(('http://', 'https://')):
        checkpoint = torch.hub.load_state_dict_from_url(model_path, map_location=device, weights_only=True)
        load_checkpoint(model, checkpoint, model_path)
    else:
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"Model weights not found: {model_path}")
        load_weights(model, model_path, device)

    model.to(device)
    model.eval()
    return BlazeFaceModel(model, config)
