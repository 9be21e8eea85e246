"""
Configuration constants for the Thermal Volume Engine.
All thresholds and configurable parameters are centralized here.
"""

# ==========================================
# Volume Settings
# ==========================================
VOLUME_META_FILENAME = "volume.json"
VOLUME_DATA_FILENAME = "volume.bin"

QUANT_LEVELS = 255                # uint8 quantization: byte 0..255

# ==========================================
# LOD (Level of Detail) Settings
# ==========================================

# Camera distance above which the coarser tier is selected
LOD_HALF_THRESHOLD = 0.45         # Full -> Half
LOD_QUARTER_THRESHOLD = 0.70      # Half -> Quarter

# ==========================================
# Raymarch (Heat Map) Settings
# ==========================================
RAYMARCH_DEFAULT_OPACITY = 0.15
RAYMARCH_OPACITY_RANGE = (0.01, 1.0)

RAYMARCH_DEFAULT_STEPS = 128
RAYMARCH_STEPS_RANGE = (16, 512)

RAYMARCH_EARLY_EXIT_ALPHA = 0.98  # Stop marching once accumulated alpha exceeds this
RAYMARCH_ENTRY_EPSILON = 1e-4     # Nudge past the entry face
RAYMARCH_BATCH_RAYS = 4096        # Rays composited per vectorised batch

# Headless heat map snapshot written by the pipeline when raymarching is enabled
HEATMAP_IMAGE_SIZE = (160, 120)   # width, height in pixels
HEATMAP_FOV_DEG = 40.0
HEATMAP_VIEW_DIRECTION = (1.0, -1.5, 1.0)

# Default window (degrees Celsius)
DEFAULT_WINDOW_MIN = 30.0
DEFAULT_WINDOW_MAX = 55.0

# ==========================================
# Thermal Colormap (green -> yellow -> red)
# ==========================================
THERMAL_GREEN = "#2ECC71"
THERMAL_YELLOW = "#F1C40F"
THERMAL_RED = "#E74C3C"

# ==========================================
# Isosurface Extraction
# ==========================================
ISO_QUALITY_PRESETS = {
    "Fast": 3,
    "Balanced": 2,
    "Full": 1,
}
DEFAULT_ISO_QUALITY = "Balanced"
DEFAULT_ISO_LEVEL = 42.5          # degrees Celsius
DEFAULT_ISO_COLOR_MODE = "Gradient"
ISO_LEVEL_RANGE = (30.0, 55.0)

ISO_MAX_STRIDE = 4

# Adaptive stride when no quality stride is given (number of cells)
ISO_STRIDE2_CELLS = 8_000_000
ISO_STRIDE3_CELLS = 27_000_000

# Cell layers (along z) processed per vectorised batch
ISO_SLAB_CELLS = 16

# Crossing cells triangulated per batch inside a slab (bounds per-tetra temporaries)
ISO_CROSSING_CHUNK_CELLS = 65_536

# Display opacity of generated surfaces
ISO_SURFACE_OPACITY = 0.5

# ==========================================
# Extraction Worker Settings
# ==========================================
WORKER_MAX_WORKERS = 1            # One isolated process per request

# ==========================================
# Statistics
# ==========================================
STATS_PERCENTILES = (10.0, 75.0, 97.5)
