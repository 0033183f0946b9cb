import io
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from image2taxonomy.exception import ImagePreprocessError
from image2taxonomy.logger import get_logger
from image2taxonomy.models import PreparedImage

logger = get_logger(__name__)

DEFAULT_TARGET_SIZE = 768
DEFAULT_JPEG_QUALITY = 90

_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}


def scaled_size(width: int, height: int, target_size: int) -> Tuple[int, int]:
    """Size with the shortest side at target_size, aspect ratio kept."""
    if width < height:
        return target_size, int(height * target_size / width)
    return int(width * target_size / height), target_size


def prepare_image(
    image_path: str,
    target_size: int = DEFAULT_TARGET_SIZE,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
) -> PreparedImage:
    """
    Bound the shortest side of an image to target_size for the vision model.

    Images that would not shrink (shortest side already at or below the
    target) are passed through byte for byte. Resized PNGs stay PNG,
    everything else is re-encoded as JPEG.
    """
    try:
        with open(image_path, "rb") as f:
            original = f.read()

        with Image.open(io.BytesIO(original)) as img:
            img.load()
            width, height = img.size
            fmt = (img.format or "").upper()
            logger.info(f"Original image size: {width}x{height} (format: {fmt or 'unknown'})")

            new_width, new_height = scaled_size(width, height, target_size)
            if width <= new_width and height <= new_height:
                logger.info(f"Image is already small enough ({width}x{height}), skipping resize")
                return PreparedImage(
                    data=original,
                    mime_type=_MIME_TYPES.get(fmt, "image/jpeg"),
                    width=width,
                    height=height,
                )

            logger.info(f"Resizing to: {new_width}x{new_height}")
            resized = img.resize((new_width, new_height), Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        if fmt == "PNG":
            resized.save(buffer, format="PNG")
            mime_type = "image/png"
        else:
            if resized.mode not in ("RGB", "L"):
                resized = resized.convert("RGB")
            resized.save(buffer, format="JPEG", quality=jpeg_quality)
            mime_type = "image/jpeg"

        return PreparedImage(
            data=buffer.getvalue(),
            mime_type=mime_type,
            width=new_width,
            height=new_height,
            resized=True,
        )

    except FileNotFoundError:
        raise ImagePreprocessError(f"failed to open image: {image_path} does not exist")
    except UnidentifiedImageError:
        raise ImagePreprocessError(f"failed to decode image: {image_path}")
    except (OSError, ValueError) as e:
        raise ImagePreprocessError(f"failed to resize image {image_path}: {e}")
