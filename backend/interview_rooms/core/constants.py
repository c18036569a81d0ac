"""
Core Application Constants
Defines recording, timing and evaluation defaults used across the session runtime.
"""

# Recorder container/codec preference, best first
MIME_TYPE_PREFERENCES = (
    "video/webm;codecs=vp9,opus",
    "video/webm;codecs=vp8,opus",
    "video/webm",
    "video/mp4",
)

# Camera constraints requested from the candidate's device
IDEAL_VIDEO_WIDTH = 1280
IDEAL_VIDEO_HEIGHT = 720
IDEAL_FRAME_RATE = 30

RECORDING_TIMESLICE_MS = 1000  # Recorder flushes a chunk every second
RECORDING_VIDEO_BITS_PER_SECOND = 2_500_000  # 2.5 Mbps
RECORDING_MIN_BYTES = 1000  # Anything smaller is a device/driver glitch

TIMER_TICK_SECONDS = 1.0

TRANSCRIPT_MAX_CHARS = 1000

# Document store collections
ROOMS_COLLECTION = "rooms"
PARTICIPANTS_COLLECTION = "room_participants"
PROFILES_COLLECTION = "profiles"
