"""Tests for the exact color histogram and top color extraction."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from conftest import BLUE, GREEN, RED, WHITE, counted_image, encode_image, four_color_image
from topcolors.features.color import (
    DecodeError,
    IncompatibleColorModel,
    InsufficientColors,
    PixelGrid,
    color_hex,
    count_colors,
    histogram,
    rank,
    top_colors,
    ycbcr_to_rgb,
)
from topcolors.io.models import RankedColor


def test_histogram_counts_every_pixel() -> None:
    data = counted_image({RED: 4, GREEN: 3, BLUE: 2, WHITE: 1})

    hist = histogram(io.BytesIO(data))

    assert hist.mode == "RGB"
    assert hist.total == hist.width * hist.height == 10
    assert hist.counts == {RED: 4, GREEN: 3, BLUE: 2, WHITE: 1}


def test_histogram_conserves_pixels_for_jpeg() -> None:
    img = Image.new("RGB", (17, 9), (200, 40, 90))
    img.paste((10, 10, 10), (0, 0, 8, 9))

    hist = histogram(io.BytesIO(encode_image(img, "JPEG")))

    assert (hist.width, hist.height) == (17, 9)
    assert hist.total == 17 * 9


def test_jpeg_is_counted_in_native_ycbcr() -> None:
    img = Image.new("RGB", (16, 16), (128, 128, 128))

    hist = histogram(io.BytesIO(encode_image(img, "JPEG")))

    assert hist.mode == "YCbCr"
    assert hist.counts == {(128, 128, 128): 256}
    assert top_colors(rank(hist)) == ("808080", "808080", "808080")


def test_noisy_jpeg_keys_are_ycbcr_triples() -> None:
    noise = np.random.default_rng(3).integers(0, 256, size=(32, 32, 3), dtype=np.uint8)
    data = encode_image(Image.fromarray(noise, "RGB"), "JPEG")

    hist = histogram(io.BytesIO(data))
    with Image.open(io.BytesIO(data)) as img:
        img.draft("YCbCr", img.size)
        native = np.asarray(img.convert("YCbCr"))

    assert hist.mode == "YCbCr"
    assert hist.total == 32 * 32
    assert set(hist.counts) == {tuple(int(v) for v in px) for px in native.reshape(-1, 3)}


def test_rank_is_ascending_by_count() -> None:
    hist = histogram(io.BytesIO(counted_image({RED: 4, WHITE: 1, GREEN: 3, BLUE: 2})))

    ranked = rank(hist)

    assert [entry.count for entry in ranked] == [1, 2, 3, 4]
    assert ranked[-1].color == RED


def test_top_colors_highest_first() -> None:
    hist = histogram(io.BytesIO(counted_image({RED: 4, GREEN: 3, BLUE: 2, WHITE: 1})))

    assert top_colors(rank(hist)) == ("ff0000", "00ff00", "0000ff")


def test_top_colors_with_tied_counts_picks_from_the_fixture() -> None:
    hist = histogram(io.BytesIO(four_color_image()))

    colors = top_colors(rank(hist))

    assert len(colors) == 3
    assert len(set(colors)) == 3
    assert set(colors) <= {"ff0000", "00ff00", "0000ff", "ffffff"}


def test_top_colors_repeats_last_entry_for_two_colors() -> None:
    ranked = [RankedColor((0, 0, 255), 1), RankedColor((255, 0, 0), 5)]

    assert top_colors(ranked) == ("ff0000", "0000ff", "0000ff")


def test_top_colors_single_color_image() -> None:
    img = Image.new("RGB", (3, 3), (18, 52, 86))

    colors = top_colors(rank(histogram(io.BytesIO(encode_image(img)))))

    assert colors == ("123456", "123456", "123456")


def test_top_colors_empty_ranking_fails() -> None:
    with pytest.raises(InsufficientColors):
        top_colors([])


def test_grayscale_image_is_incompatible() -> None:
    img = Image.new("L", (4, 4), 120)

    with pytest.raises(IncompatibleColorModel, match="incompatible color model"):
        histogram(io.BytesIO(encode_image(img, "JPEG")))


def test_palette_image_is_incompatible() -> None:
    img = Image.new("RGB", (4, 4), (1, 2, 3)).convert("P")

    with pytest.raises(IncompatibleColorModel):
        histogram(io.BytesIO(encode_image(img, "PNG")))


def test_garbage_payload_is_decode_error() -> None:
    with pytest.raises(DecodeError):
        histogram(io.BytesIO(b"<html>not an image</html>"))


def test_truncated_jpeg_is_decode_error() -> None:
    noise = np.random.default_rng(7).integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
    data = encode_image(Image.fromarray(noise, "RGB"), "JPEG")

    with pytest.raises(DecodeError):
        histogram(io.BytesIO(data[: len(data) // 2]))


def test_ycbcr_grid_converts_to_rgb_hex() -> None:
    pixels = np.array(
        [[[255, 128, 128], [255, 128, 128], [0, 128, 128]]], dtype=np.uint8
    )
    hist = count_colors(PixelGrid(mode="YCbCr", pixels=pixels))

    assert hist.total == 3
    assert top_colors(rank(hist)) == ("ffffff", "000000", "000000")


@pytest.mark.parametrize(
    ("ycbcr", "rgb"),
    [
        ((255, 128, 128), (255, 255, 255)),
        ((0, 128, 128), (0, 0, 0)),
        ((128, 128, 128), (128, 128, 128)),
        ((0, 0, 255), (178, 0, 0)),
    ],
)
def test_ycbcr_to_rgb(ycbcr: tuple[int, int, int], rgb: tuple[int, int, int]) -> None:
    assert ycbcr_to_rgb(*ycbcr) == rgb


def test_color_hex_is_zero_padded_lowercase() -> None:
    assert color_hex((1, 10, 171)) == "010aab"
