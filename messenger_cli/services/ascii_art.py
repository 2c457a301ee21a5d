from __future__ import annotations

from PIL import Image

# Darkest to brightest.
ASCII_RAMP = " .:-=+*#%@"

# Glyphs are roughly twice as tall as they are wide.
CELL_ASPECT = 0.5
NARROW_CELL_ASPECT = 0.45
NARROW_RENDER_COLUMNS = 100


def fit_size(width: int, height: int, *, columns: int, rows: int) -> tuple[int, int]:
    """Character grid that fits ``columns`` x ``rows`` and keeps the aspect ratio."""
    if width <= 0 or height <= 0:
        raise ValueError("Image has no pixels")
    if columns <= 0 or rows <= 0:
        raise ValueError("Viewport is empty")

    aspect = CELL_ASPECT if columns >= NARROW_RENDER_COLUMNS else NARROW_CELL_ASPECT
    scale = min(columns / width, rows / (height * aspect))
    return max(1, int(width * scale)), max(1, int(height * aspect * scale))


def render_ascii(image: Image.Image, *, columns: int, rows: int) -> str:
    grid_width, grid_height = fit_size(*image.size, columns=columns, rows=rows)
    grayscale = image.convert("L").resize((grid_width, grid_height), Image.Resampling.BILINEAR)
    luminance = grayscale.tobytes()

    steps = len(ASCII_RAMP) - 1
    lines = []
    for row in range(grid_height):
        start = row * grid_width
        lines.append("".join(ASCII_RAMP[value * steps // 255] for value in luminance[start : start + grid_width]))
    return "\n".join(lines)
