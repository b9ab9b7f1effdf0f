#!/usr/bin/env python3
"""
Generate a synthetic test video with known sharp, held and blurred segments.

Segments (each a third of the duration):
  1. A checkerboard scrolling diagonally   -> sharp, all different
  2. The last frame of (1) held still       -> near-duplicates
  3. The scroll continued with motion blur  -> high gradient blur scores

Usage:
    python scripts/generate_synthetic_video.py [output.mp4] [duration] [fps]

Then run:
    framefarm analyze output.mp4 --count 12
"""

import sys
from pathlib import Path
import numpy as np
import cv2


IMAGE_W = 640
IMAGE_H = 360
TILE = 40
SCROLL_PX_PER_FRAME = 3
BLUR_KERNEL = 31  # horizontal motion blur length in px


def checkerboard(offset: int) -> np.ndarray:
    ys, xs = np.mgrid[0:IMAGE_H, 0:IMAGE_W]
    tiles = ((xs + offset) // TILE + (ys + offset) // TILE) % 2
    img = np.where(tiles[..., None] == 1, (230, 200, 60), (40, 60, 160)).astype(np.uint8)

    # A circle so frames are not purely periodic
    center = (IMAGE_W // 2 + offset % 80 - 40, IMAGE_H // 2)
    cv2.circle(img, center, 60, (250, 250, 250), thickness=-1)
    return img


def motion_blur(img: np.ndarray, length: int = BLUR_KERNEL) -> np.ndarray:
    kernel = np.zeros((length, length), dtype=np.float32)
    kernel[length // 2, :] = 1.0 / length
    return cv2.filter2D(img, -1, kernel)


def write_video(output_path: Path, duration: float = 9.0, fps: int = 25) -> int:
    total = int(duration * fps)
    segment = max(1, total // 3)

    writer = cv2.VideoWriter(
        str(output_path),
        cv2.VideoWriter_fourcc(*"mp4v"),
        fps,
        (IMAGE_W, IMAGE_H),
    )
    if not writer.isOpened():
        raise RuntimeError(f"Could not open video writer for {output_path}")

    try:
        for i in range(total):
            if i < segment:
                frame = checkerboard(i * SCROLL_PX_PER_FRAME)
            elif i < 2 * segment:
                frame = checkerboard((segment - 1) * SCROLL_PX_PER_FRAME)
            else:
                frame = motion_blur(checkerboard(i * SCROLL_PX_PER_FRAME))
            writer.write(frame)
    finally:
        writer.release()

    return total


def main():
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("synthetic.mp4")
    duration = float(sys.argv[2]) if len(sys.argv) > 2 else 9.0
    fps = int(sys.argv[3]) if len(sys.argv) > 3 else 25

    out.parent.mkdir(parents=True, exist_ok=True)
    count = write_video(out, duration, fps)

    print(f"Synthetic video: {out}  ({count} frames @ {fps}fps, {IMAGE_W}x{IMAGE_H})")
    print("  0-33%: scrolling checkerboard (sharp)")
    print("  33-66%: held frame (duplicates)")
    print("  66-100%: horizontal motion blur")
    print(f"\nRun:  framefarm analyze {out} --count 12")


if __name__ == "__main__":
    main()
