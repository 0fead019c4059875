"""
Image input and drawing utilities.

Images are handled as RGB uint8 numpy arrays of shape (H, W, 3) until they
are handed to a detector as (1, 3, H, W) float tensors.
"""
import io
import logging
import os
from typing import Any, Dict, List, Union

import cv2
import numpy as np
import requests
import torch
from PIL import Image

log = logging.getLogger("humanvision")

URL_TIMEOUT = 30


def is_url(source: str) -> bool:
    return source.startswith(('http://', 'https://'))


def read_input(source: str, timeout: float = URL_TIMEOUT) -> bytes:
    """Read raw image bytes from a local file or an http(s) URL.

    Raises:
        FileNotFoundError: local path does not exist
        IOError: URL request failed or returned a non-OK status
    """
    if is_url(source):
        try:
            response = requests.get(source, timeout=timeout)
        except requests.RequestException as err:
            raise IOError(f"Invalid image URL: {source}: {err}") from err
        if not response.ok:
            raise IOError(
                f"Invalid image URL: {source} {response.status_code} {response.reason} "
                f"{response.headers.get('content-type')}"
            )
        return response.content

    if not os.path.exists(source):
        raise FileNotFoundError(f"File not found: {source}")
    with open(source, 'rb') as f:
        return f.read()


def decode_image(buffer: bytes) -> np.ndarray:
    """Decode encoded image bytes to an RGB uint8 (H, W, 3) array.

    RGBA input drops the alpha channel; grayscale and palette images are
    expanded to three channels.
    """
    try:
        img = Image.open(io.BytesIO(buffer))
        img.load()
    except (OSError, Image.DecompressionBombError) as err:
        raise ValueError(f"Could not decode image: {err}") from err

    if img.mode != 'RGB':
        img = img.convert('RGB')
    return np.asarray(img, dtype=np.uint8)


def load_image(source: str) -> np.ndarray:
    """read_input + decode_image."""
    log.info("Loading image: %s", source)
    return decode_image(read_input(source))


def image_to_tensor(image: Union[np.ndarray, torch.Tensor]) -> torch.Tensor:
    """Convert (H, W, 3) arrays or (3, H, W) tensors to a (1, 3, H, W) float tensor."""
    if isinstance(image, np.ndarray):
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected an (H, W, 3) image, got shape {image.shape}")
        return torch.from_numpy(np.ascontiguousarray(image)).permute(2, 0, 1).unsqueeze(0).float()
    if isinstance(image, torch.Tensor):
        if image.dim() == 3:
            image = image.unsqueeze(0)
        if image.dim() != 4 or image.shape[0] != 1 or image.shape[1] != 3:
            raise ValueError(f"Expected a (1, 3, H, W) tensor, got shape {tuple(image.shape)}")
        return image.float()
    raise TypeError(f"Unsupported image type: {type(image)}")


def apply_filter(
    image: Union[np.ndarray, torch.Tensor],
    filter_config: Dict[str, Any]
) -> Union[np.ndarray, torch.Tensor]:
    """Apply the configured input filters. Returns the input unchanged when disabled.

    flip mirrors the image horizontally, on (H, W, 3) arrays and on
    (..., H, W) tensors alike.
    """
    if not filter_config.get('enabled', False):
        return image
    if filter_config.get('flip', False):
        if isinstance(image, torch.Tensor):
            image = torch.flip(image, dims=[-1])
        else:
            image = cv2.flip(image, 1)
    return image


def draw_faces(
    image: np.ndarray,
    faces: List[Dict[str, Any]],
    box_color: tuple[int, int, int] = (0, 255, 0),
    landmark_color: tuple[int, int, int] = (255, 0, 0),
    thickness: int = 2,
    landmark_radius: int = 3
) -> np.ndarray:
    """Draw face boxes, scores and landmarks on a copy of an RGB image.

    Args:
        image: RGB image (H, W, 3)
        faces: Face results with 'box' [x, y, w, h], 'score' and 'landmarks'
        box_color: RGB color for boxes and labels
        landmark_color: RGB color for landmark dots
    """
    canvas = np.ascontiguousarray(image).copy()
    for face in faces:
        x, y, w, h = [int(round(v)) for v in face['box']]
        cv2.rectangle(canvas, (x, y), (x + w, y + h), box_color, thickness)

        label = f"face {face['id']}: {face['score']:.2f}"
        (_, label_h), _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)
        # label above the box, or inside it at the top edge
        label_y = y - 5 if y > label_h + 5 else y + label_h + 5
        cv2.putText(canvas, label, (x, label_y), cv2.FONT_HERSHEY_SIMPLEX, 0.5, box_color, 1, cv2.LINE_AA)

        for lx, ly in face.get('landmarks', []):
            cv2.circle(canvas, (int(lx), int(ly)), landmark_radius, landmark_color, -1)
    return canvas


def save_image(path: str, image: np.ndarray) -> None:
    """Write an RGB image to disk."""
    if not cv2.imwrite(path, cv2.cvtColor(image, cv2.COLOR_RGB2BGR)):
        raise IOError(f"Could not write image: {path}")
