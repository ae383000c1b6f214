"""
Application Configuration
=========================
Runtime defaults. Every value can be overridden through an environment variable.
"""

import os

# Logging
LOG_LEVEL = os.getenv("BATCHMARK_LOG_LEVEL", "INFO").upper()

# Preview debounce window (milliseconds)
PREVIEW_DEBOUNCE_MS = int(os.getenv("BATCHMARK_PREVIEW_DEBOUNCE_MS", "120"))

# Encoder quality for lossy formats, kept inside 92-95
ENCODE_QUALITY = max(92, min(95, int(os.getenv("BATCHMARK_ENCODE_QUALITY", "92"))))

# Prefix for exported file names: marked_<original name>
OUTPUT_PREFIX = os.getenv("BATCHMARK_OUTPUT_PREFIX", "marked_")

# Archive name, formatted with a millisecond timestamp
ARCHIVE_NAME_TEMPLATE = os.getenv("BATCHMARK_ARCHIVE_NAME", "marked_images_{timestamp}.zip")

# Optional font file used before any family lookup
CUSTOM_FONT_PATH = os.getenv("BATCHMARK_FONT_PATH", "")

# File types offered by the file dialog and accepted on drop
SUPPORTED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".gif", ".webp", ".tiff"}
