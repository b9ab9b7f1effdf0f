"""Image loading helpers shared by the analysis stage."""

from pathlib import Path
from typing import Union
import numpy as np
import cv2
from PIL import Image


class ImageLoadError(Exception):
    """Image could not be read or decoded."""
    pass


def load_grayscale(image_path: Union[str, Path]) -> np.ndarray:
    """Read an image as a 2-D uint8 grayscale array."""
    img = cv2.imread(str(image_path), cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise ImageLoadError(f"Could not read image: {image_path}")
    return img


def resize_to_width(img: np.ndarray, width: int) -> np.ndarray:
    """Scale to a fixed width, preserving aspect ratio."""
    h, w = img.shape[:2]
    if w == width:
        return img
    height = max(1, int(round(h * width / w)))
    interpolation = cv2.INTER_AREA if width < w else cv2.INTER_LINEAR
    return cv2.resize(img, (width, height), interpolation=interpolation)


def load_grayscale_grid(image_path: Union[str, Path], width: int, height: int) -> np.ndarray:
    """
    Grayscale image squashed to exactly width x height (aspect ignored).

    Uses Lanczos resampling.
    """
    try:
        with Image.open(image_path) as img:
            small = img.convert("L").resize((width, height), Image.Resampling.LANCZOS)
            return np.asarray(small, dtype=np.int16)
    except (OSError, ValueError) as e:
        raise ImageLoadError(f"Could not read image: {image_path}: {e}") from e
