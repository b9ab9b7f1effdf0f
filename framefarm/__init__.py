"""
FrameFarm Frame Culling Engine

Samples representative frames from a video, caches the decoded thumbnails,
and scores each frame for blur and near-duplication so a large set of
auto-generated frames can be culled down to the best few.

Pipeline stages:
1. Detect - Locate and verify ffmpeg/ffprobe
2. Sample - Frame-aligned timestamps across the video
3. Extract - Thumbnails into a fingerprinted cache directory
4. Analyze - Blur score + perceptual hash per frame, duplicate flagging
5. Group - Similarity groups for review
6. Export - Selected frames to GIF or MP4
"""

__version__ = "0.1.0"
