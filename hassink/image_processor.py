"""Conversion of raw dashboard screenshots into eInk friendly images"""

import io
import logging
import os
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter

from .config import TargetConfig
from .errors import ConversionError

logger = logging.getLogger(__name__)

GAMMA_EXPONENT = 1.0 / 2.2
JPEG_QUALITY = 100
PNG_COMPRESS_LEVEL = 9


class ImageProcessor:
    """Post-processing steps applied to a screenshot, in pipeline order"""

    @staticmethod
    def palette_size(grayscale_depth: int) -> int:
        """Number of output colours for a grayscale bit depth"""
        if grayscale_depth == 1:
            return 2
        if grayscale_depth == 4:
            return 16
        return 256

    @staticmethod
    def normalize_mode(img: Image.Image) -> Image.Image:
        """Flatten transparency onto white and bring the image into L or RGB"""
        if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
            rgba = img.convert('RGBA')
            background = Image.new('RGBA', rgba.size, (255, 255, 255, 255))
            return Image.alpha_composite(background, rgba).convert('RGB')
        if img.mode not in ('RGB', 'L'):
            return img.convert('RGB')
        return img

    @staticmethod
    def apply_lut(img: Image.Image, lut: np.ndarray) -> Image.Image:
        """Map every channel value through a 256 entry lookup table"""
        pixels = np.asarray(img, dtype=np.uint8)
        return Image.fromarray(lut[pixels])

    @staticmethod
    def linear(img: Image.Image, multiplier: float, offset: float) -> Image.Image:
        """output = input * multiplier + offset, clamped to [0, 255]"""
        values = np.arange(256, dtype=np.float64) * multiplier + offset
        lut = np.clip(np.rint(values), 0, 255).astype(np.uint8)
        return ImageProcessor.apply_lut(img, lut)

    @staticmethod
    def remove_gamma(img: Image.Image) -> Image.Image:
        values = 255.0 * (np.arange(256, dtype=np.float64) / 255.0) ** GAMMA_EXPONENT
        lut = np.clip(np.rint(values), 0, 255).astype(np.uint8)
        return ImageProcessor.apply_lut(img, lut)

    @staticmethod
    def rotate(img: Image.Image, rotation: int) -> Image.Image:
        """Rotate clockwise by a multiple of 90 degrees, filling corners with white"""
        return img.rotate(-rotation, expand=True, fillcolor='white')

    @staticmethod
    def adjust_saturation(img: Image.Image, saturation: float) -> Image.Image:
        if img.mode != 'RGB':
            return img
        return ImageEnhance.Color(img).enhance(saturation)

    @staticmethod
    def adjust_contrast(img: Image.Image, contrast: float) -> Image.Image:
        """Contrast anchored at the midpoint: contrast 0 collapses everything to 128"""
        return ImageProcessor.linear(img, contrast, 128 - 128 * contrast)

    @staticmethod
    def adjust_levels(img: Image.Image, black_level: float, white_level: float) -> Image.Image:
        """Stretch the input range [black, white] onto [0, 255]"""
        input_min = round(black_level * 255)
        input_max = round(white_level * 255)
        if input_max <= input_min:
            raise ValueError(f"White level must be above black level ({input_min} >= {input_max})")
        multiplier = 255 / (input_max - input_min)
        offset = -input_min * multiplier
        return ImageProcessor.linear(img, multiplier, offset)

    @staticmethod
    def sharpen_for_dither(img: Image.Image) -> Image.Image:
        # Edge sharpening stands in for dithering on limited palette panels
        return img.filter(ImageFilter.UnsharpMask(radius=0.5, percent=200, threshold=2))

    @staticmethod
    def quantize_gray(img: Image.Image, levels: int) -> Image.Image:
        """Snap a grayscale image to evenly spaced levels, keeping a single channel"""
        if levels >= 256:
            return img
        step = 255.0 / (levels - 1)
        lut = np.clip(np.rint(np.rint(np.arange(256) / step) * step), 0, 255).astype(np.uint8)
        return ImageProcessor.apply_lut(img, lut)

    @staticmethod
    def encode(img: Image.Image, target: TargetConfig) -> bytes:
        """Encode as the target's format; unknown formats are written as PNG"""
        output = io.BytesIO()
        image_format = target.image_format.lower()

        if image_format == 'bmp':
            img.save(output, format='BMP')
        elif image_format in ('jpg', 'jpeg'):
            img.save(output, format='JPEG', quality=JPEG_QUALITY, subsampling=0)
        else:
            if image_format != 'png':
                logger.debug(f"Unknown image format '{target.image_format}', encoding as PNG")
            colors = ImageProcessor.palette_size(target.grayscale_depth)
            if target.is_grayscale:
                if img.mode != 'L':
                    img = img.convert('L')
                img = ImageProcessor.quantize_gray(img, colors)
            else:
                img = img.convert('RGB').quantize(
                    colors=colors,
                    method=Image.Quantize.MEDIANCUT,
                    dither=Image.Dither.NONE,
                )
            img.save(output, format='PNG', compress_level=PNG_COMPRESS_LEVEL)

        return output.getvalue()


def process_image(data: bytes, target: TargetConfig) -> bytes:
    """
    Convert raw screenshot bytes into the encoded artifact for a target

    The order of the steps matters and is fixed: gamma, rotation, grayscale,
    saturation, contrast, levels, dither, encode.

    Raises:
        ConversionError: If the input cannot be decoded or the output encoded
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageProcessor.normalize_mode(img)

        if target.remove_gamma:
            img = ImageProcessor.remove_gamma(img)

        if target.rotation != 0:
            img = ImageProcessor.rotate(img, target.rotation)

        if target.is_grayscale:
            img = img.convert('L')

        if target.saturation != 1:
            img = ImageProcessor.adjust_saturation(img, target.saturation)

        if target.contrast != 1:
            img = ImageProcessor.adjust_contrast(img, target.contrast)

        black_level, white_level = target.levels
        if black_level > 0 or white_level < 1:
            img = ImageProcessor.adjust_levels(img, black_level, white_level)

        if target.dither:
            img = ImageProcessor.sharpen_for_dither(img)

        return ImageProcessor.encode(img, target)

    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ConversionError(f"Failed to convert image for target {target.index}: {e}") from e


def convert_file(input_path: Union[str, Path], output_path: Union[str, Path], target: TargetConfig):
    """
    Convert a screenshot file into the target's artifact

    The output is written to a sibling '.part' file and moved over the final
    path in one step, so readers never see a partially written image.
    """
    input_path = Path(input_path)
    output_path = Path(output_path)
    part_path = output_path.with_name(output_path.name + '.part')

    try:
        data = input_path.read_bytes()
    except OSError as e:
        raise ConversionError(f"Failed to read screenshot {input_path}: {e}") from e

    encoded = process_image(data, target)

    try:
        part_path.write_bytes(encoded)
        os.replace(part_path, output_path)
    except OSError as e:
        part_path.unlink(missing_ok=True)
        raise ConversionError(f"Failed to write {output_path}: {e}") from e

    logger.info(f"Saved image: {output_path} ({len(encoded)} bytes)")
