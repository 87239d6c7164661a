from __future__ import annotations

import io
import random
import string

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from .models import CaptchaChallenge

__all__ = ["ALPHABET", "UPPERCASE", "generate_captcha", "render_captcha_image"]

UPPERCASE = string.ascii_uppercase
# Glyphs that are hard to tell apart once distorted.
_AMBIGUOUS = set("0Oo1Il")
ALPHABET = "".join(
    ch for ch in string.ascii_uppercase + string.ascii_lowercase + string.digits if ch not in _AMBIGUOUS
)

_WIDTH = 280
_HEIGHT = 90
_FONT_SIZE = 42
_FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "DejaVuSans.ttf", "arial.ttf")
_TEXT_COLOURS = ("#1f2937", "#1e3a8a", "#7f1d1d", "#14532d", "#581c87")
_NOISE_COLOURS = ("#9ca3af", "#d1d5db", "#6b7280")


def generate_captcha(length: int = 6, excluded: str = "", *, rng: random.Random | None = None) -> CaptchaChallenge:
    """Create a random captcha whose text avoids every character in *excluded*."""

    if length < 1:
        raise ValueError("Captcha length must be at least 1")
    pool = [ch for ch in ALPHABET if ch not in set(excluded)]
    if not pool:
        raise ValueError("Captcha alphabet is empty after exclusions")

    rng = rng or random.SystemRandom()
    text = "".join(rng.choice(pool) for _ in range(length))
    return CaptchaChallenge(image=render_captcha_image(text, rng=rng), text=text)


def _load_font() -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for name in _FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, _FONT_SIZE)
        except OSError:
            continue
    try:
        return ImageFont.load_default(size=_FONT_SIZE)
    except TypeError:  # Pillow < 10.1 has no sized default font
        return ImageFont.load_default()


def render_captcha_image(text: str, *, rng: random.Random | None = None) -> bytes:
    rng = rng or random.SystemRandom()
    image = Image.new("RGB", (_WIDTH, _HEIGHT), "white")
    draw = ImageDraw.Draw(image)
    font = _load_font()

    for _ in range(rng.randint(4, 7)):
        start = (rng.randint(0, _WIDTH), rng.randint(0, _HEIGHT))
        end = (rng.randint(0, _WIDTH), rng.randint(0, _HEIGHT))
        draw.line([start, end], fill=rng.choice(_NOISE_COLOURS), width=2)

    bbox = draw.textbbox((0, 0), text, font=font)
    text_height = bbox[3] - bbox[1]
    slot = _WIDTH // (len(text) + 1)
    x = slot // 2
    y = max(0, (_HEIGHT - text_height) // 2 - bbox[1])

    for char in text:
        glyph = Image.new("RGBA", (_FONT_SIZE + 16, _FONT_SIZE + 24), (0, 0, 0, 0))
        ImageDraw.Draw(glyph).text((8, 4), char, font=font, fill=rng.choice(_TEXT_COLOURS))
        glyph = glyph.rotate(rng.uniform(-25, 25), resample=Image.Resampling.BICUBIC, expand=True)
        image.paste(glyph, (x + rng.randint(-3, 3), y + rng.randint(-6, 6) - 4), glyph)
        x += slot

    for _ in range(rng.randint(80, 140)):
        draw.point((rng.randint(0, _WIDTH - 1), rng.randint(0, _HEIGHT - 1)), fill=rng.choice(_NOISE_COLOURS))

    image = image.filter(ImageFilter.SMOOTH)

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
