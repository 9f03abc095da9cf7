"""
Image codec helpers for the texture pipeline.
The composer and decomposer only go through these calls; pixels are always RGBA.
"""

from pathlib import Path
from typing import Iterable, Tuple, Union
from PIL import Image
import io

Layer = Tuple[Image.Image, int, int]


class ImageUtils:
    """Utility class for the raster operations atlas work needs."""

    @staticmethod
    def load_image(data: Union[bytes, str, Path, Image.Image]) -> Image.Image:
        """
        Decode an image and normalize it to RGBA.

        Args:
            data: Image data as bytes, file path, or PIL Image

        Returns:
            RGBA PIL Image

        Raises:
            ValueError: If data cannot be decoded as an image
        """
        if isinstance(data, Image.Image):
            return ImageUtils.ensure_rgba(data)
        elif isinstance(data, bytes):
            try:
                image = Image.open(io.BytesIO(data))
                image.load()
            except Exception as e:
                raise ValueError(f"Cannot load image from bytes: {e}")
        elif isinstance(data, (str, Path)):
            try:
                with Image.open(data) as opened:
                    opened.load()
                    image = opened.copy()
            except Exception as e:
                raise ValueError(f"Cannot load image from path '{data}': {e}")
        else:
            raise ValueError(f"Unsupported image data type: {type(data)}")

        return ImageUtils.ensure_rgba(image)

    @staticmethod
    def save_image(image: Image.Image, path: Union[str, Path], format: str = 'PNG', **kwargs) -> None:
        """
        Encode an image to disk.

        Args:
            image: Image to save
            path: Output file path
            format: Image format (PNG, JPEG, etc.)
            **kwargs: Additional save parameters
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if format.upper() == 'PNG':
            path.write_bytes(ImageUtils.encode_png(image, kwargs.pop('compress_level', 6), **kwargs))
            return
        image.save(path, format=format, **kwargs)

    @staticmethod
    def encode_png(image: Image.Image, compress_level: int = 6, **kwargs) -> bytes:
        """Encode an image to PNG bytes."""
        buffer = io.BytesIO()
        image.save(buffer, format='PNG', compress_level=compress_level, **kwargs)
        return buffer.getvalue()

    @staticmethod
    def ensure_rgba(image: Image.Image) -> Image.Image:
        """Convert image to RGBA mode if not already."""
        if image.mode != 'RGBA':
            return image.convert('RGBA')
        return image

    @staticmethod
    def resize_to_cell(image: Image.Image, cell_size: int) -> Image.Image:
        """
        Resize an image to exactly cell_size x cell_size.

        Nearest neighbour keeps pixel art crisp. An image already at the cell
        size is returned untouched so compose/decompose is lossless.
        """
        if image.size == (cell_size, cell_size):
            return image
        return image.resize((cell_size, cell_size), Image.NEAREST)

    @staticmethod
    def crop_cell(image: Image.Image, grid_x: int, grid_y: int, cell_size: int) -> Image.Image:
        """Cut one grid cell out of an atlas."""
        left = grid_x * cell_size
        top = grid_y * cell_size
        return image.crop((left, top, left + cell_size, top + cell_size))

    @staticmethod
    def new_canvas(width: int, height: int) -> Image.Image:
        """Fully transparent RGBA canvas."""
        return Image.new('RGBA', (width, height), (0, 0, 0, 0))

    @staticmethod
    def placeholder_tile(cell_size: int, color: Tuple[int, int, int, int] = (255, 0, 255, 255)) -> Image.Image:
        """Solid tile used for cells that are intentionally blank."""
        return Image.new('RGBA', (cell_size, cell_size), color)

    @staticmethod
    def composite(canvas: Image.Image, layers: Iterable[Layer]) -> Image.Image:
        """
        Paste layers onto the canvas in order.

        Layers replace the pixels under them rather than alpha-blending, so a
        later layer on the same cell fully wins.

        Args:
            canvas: Target canvas, modified in place
            layers: (image, x, y) tuples in pixel offsets

        Returns:
            The canvas
        """
        for image, x, y in layers:
            canvas.paste(image, (x, y))
        return canvas
