"""
File Studio compression.

Images are re-encoded with Pillow, either at a fixed quality or searched down
to a target byte size; anything else is gzip-compressed.
"""
import io
import os
import gzip
import uuid
from dataclasses import dataclass, field
from enum import Enum

from PIL import Image, UnidentifiedImageError

from jackometer import config
from jackometer.config import setup_logger

logger = setup_logger(__name__)

MIN_QUALITY = 0.01
MAX_QUALITY = 1.0
QUALITY_MAX_WIDTH = 1920
EXTENSIONS = {"image/jpeg": ".jpg", "image/webp": ".webp", "image/png": ".png"}


class CompressionError(Exception):
    pass


class Status(str, Enum):
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    ERROR = "ERROR"


@dataclass
class Policy:
    max_width: int = config.COMPRESS_MAX_WIDTH
    max_iterations: int = config.COMPRESS_MAX_ITERATIONS
    probe_steps: int = config.COMPRESS_PROBE_STEPS
    shrink_ratio: float = config.COMPRESS_SHRINK_RATIO
    min_dimension: int = config.COMPRESS_MIN_DIMENSION

    def __post_init__(self):
        self.max_iterations = max(1, self.max_iterations)
        self.probe_steps = max(1, self.probe_steps)


@dataclass
class Result:
    data: bytes
    format: str
    width: int
    height: int
    quality: float
    iterations: int
    fits: bool

    @property
    def mime_type(self):
        return f"image/{self.format.lower()}"


@dataclass
class CompressedFile:
    original_name: str
    type: str
    original_size: int
    compressed_size: int = 0
    blob: bytes = b""
    status: Status = Status.PROCESSING
    savings: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def finish(self, blob):
        self.blob = blob
        self.compressed_size = len(blob)
        self.status = Status.DONE
        if self.original_size:
            self.savings = max(0.0, (self.original_size - len(blob)) / self.original_size * 100)

    @property
    def is_image(self):
        return self.type.startswith("image/")

    @property
    def download_name(self):
        if not self.is_image:
            return f"{self.original_name}.gz"
        base, ext = os.path.splitext(self.original_name)
        return f"min_{base}{EXTENSIONS.get(self.type, ext)}"

    def to_dict(self):
        return {
            "id": self.id,
            "originalName": self.original_name,
            "type": self.type,
            "originalSize": self.original_size,
            "compressedSize": self.compressed_size,
            "savings": round(self.savings, 1),
            "status": self.status.value,
            "downloadName": self.download_name,
        }


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise CompressionError(f"Could not decode image: {e}") from e
    return img


def _flatten(img: Image.Image) -> Image.Image:
    """Drop transparency onto a white background."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def output_format(source_format) -> str:
    # PNG ignores quality, so it is re-encoded as JPEG
    if (source_format or "").upper() == "WEBP":
        return "WEBP"
    return "JPEG"


def encode(img: Image.Image, fmt: str, quality: float) -> bytes:
    q = max(1, min(100, round(quality * 100)))
    with io.BytesIO() as out:
        img.save(out, format=fmt, quality=q)
        return out.getvalue()


def _capped_size(width, height, max_width):
    if width > max_width:
        height = max(1, round(height * max_width / width))
        width = max_width
    return width, height


def compress_to_target(data: bytes, target_bytes: int, policy: Policy = None) -> Result:
    """
    Re-encode an image so it fits in ``target_bytes``.

    Quality is binary-searched at the current resolution; when even the
    minimum quality is too large, both axes shrink by ``shrink_ratio`` and the
    search repeats. The loop stops at ``max_iterations`` or when another
    shrink would cross ``min_dimension``, returning the last minimum-quality
    encode (``fits`` is False in that case).
    """
    policy = policy or Policy()
    source = _open(data)
    fmt = output_format(source.format)
    img = _flatten(source) if fmt == "JPEG" else source.convert("RGBA" if "A" in source.getbands() else "RGB")

    width, height = _capped_size(img.width, img.height, policy.max_width)
    fallback = None

    for iteration in range(1, policy.max_iterations + 1):
        frame = img if (width, height) == img.size else img.resize((width, height), Image.LANCZOS)

        lo, hi = MIN_QUALITY, MAX_QUALITY
        best, best_q = None, None
        for _ in range(policy.probe_steps):
            mid = (lo + hi) / 2
            blob = encode(frame, fmt, mid)
            if len(blob) <= target_bytes:
                best, best_q = blob, mid
                lo = mid
            else:
                hi = mid

        if best is not None:
            logger.debug("Fit %dx%d at q=%.2f after %d passes", width, height, best_q, iteration)
            return Result(best, fmt, width, height, best_q, iteration, True)

        floor_blob = encode(frame, fmt, MIN_QUALITY)
        fallback = Result(floor_blob, fmt, width, height, MIN_QUALITY, iteration,
                          len(floor_blob) <= target_bytes)
        if fallback.fits:
            return fallback

        next_w, next_h = int(width * policy.shrink_ratio), int(height * policy.shrink_ratio)
        if next_w < policy.min_dimension or next_h < policy.min_dimension:
            break
        width, height = next_w, next_h

    logger.info("Target %d bytes not reachable, returning %d bytes at %dx%d",
                target_bytes, len(fallback.data), fallback.width, fallback.height)
    return fallback


def compress_image(data: bytes, quality: float, max_width: int = QUALITY_MAX_WIDTH) -> Result:
    """Single re-encode at a fixed quality, keeping the source format."""
    img = _open(data)
    fmt = (img.format or "JPEG").upper()
    if fmt not in ("JPEG", "WEBP", "PNG"):
        fmt = "JPEG"
    if fmt == "JPEG":
        img = _flatten(img)
    width, height = _capped_size(img.width, img.height, max_width)
    if (width, height) != img.size:
        img = img.resize((width, height), Image.LANCZOS)
    quality = max(0.1, min(MAX_QUALITY, quality))
    return Result(encode(img, fmt, quality), fmt, width, height, quality, 1, True)


def compress_generic(data: bytes) -> bytes:
    return gzip.compress(data)


def process_file(name: str, mime_type: str, data: bytes, quality: float = 0.6,
                 target_bytes: int = None, policy: Policy = None) -> CompressedFile:
    """Compress one upload into a CompressedFile; decode failures set ERROR."""
    entry = CompressedFile(original_name=name, type=mime_type or "application/octet-stream",
                           original_size=len(data))
    try:
        if entry.is_image:
            if target_bytes:
                result = compress_to_target(data, target_bytes, policy)
            else:
                result = compress_image(data, quality)
            entry.type = result.mime_type
            entry.finish(result.data)
        else:
            entry.finish(compress_generic(data))
    except CompressionError:
        logger.exception("Compression failed for %s", name)
        entry.status = Status.ERROR
    return entry
