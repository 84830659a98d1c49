from __future__ import annotations

import pytest

from app.compositor import blank_canvas, check_drawing, combine, decode_image, encode_image, overlay, peek
from app.errors import ImageDecodeError


def test_decode_accepts_data_url_and_bare_base64(make_png) -> None:
    data = make_png((10, 20, 30, 255), (4, 3))
    assert decode_image(data).size == (4, 3)
    assert decode_image(data.split(",", 1)[1]).size == (4, 3)


@pytest.mark.parametrize("bad", ["", "data:image/png;base64,!!!", "aGVsbG8gd29ybGQ="])
def test_decode_rejects_garbage(bad: str) -> None:
    with pytest.raises(ImageDecodeError):
        decode_image(bad)


def test_combine_stacks_in_order(make_png) -> None:
    red = make_png((255, 0, 0, 255), (10, 5))
    blue = make_png((0, 0, 255, 255), (10, 5))

    out = decode_image(combine([red, blue]))

    assert out.size == (10, 10)
    assert out.getpixel((0, 0)) == (255, 0, 0, 255)
    assert out.getpixel((0, 9)) == (0, 0, 255, 255)


def test_combine_substitutes_blank_for_undecodable_input(make_png) -> None:
    red = make_png((255, 0, 0, 255), (800, 600))

    out = decode_image(combine([red, "not-an-image"]))

    assert out.size == (800, 1200)
    assert out.getpixel((0, 0)) == (255, 0, 0, 255)
    assert out.getpixel((0, 1199))[3] == 0


def test_combine_of_nothing_is_blank_canvas() -> None:
    assert combine([]) == blank_canvas()
    assert decode_image(blank_canvas()).size == (800, 600)


def test_overlay_scales_and_composites(make_png) -> None:
    base = make_png((255, 0, 0, 255), (20, 20))
    half = make_png((0, 255, 0, 0), (10, 10))

    out = decode_image(overlay([base, half], width=40, height=30))

    assert out.size == (40, 30)
    assert out.getpixel((5, 5)) == (255, 0, 0, 255)


def test_overlay_rejects_non_positive_size(make_png) -> None:
    with pytest.raises(ValueError):
        overlay([make_png()], width=0, height=10)


def test_peek_keeps_only_bottom_strip_at_top_of_frame() -> None:
    from PIL import Image

    img = Image.new("RGBA", (800, 600), (0, 0, 0, 0))
    img.paste((0, 0, 255, 255), (0, 500, 800, 600))
    img.paste((255, 0, 0, 255), (0, 0, 800, 100))

    out = decode_image(peek(encode_image(img), 100))

    assert out.size == (800, 600)
    assert out.getpixel((400, 0)) == (0, 0, 255, 255)
    assert out.getpixel((400, 99)) == (0, 0, 255, 255)
    assert out.getpixel((400, 100))[3] == 0
    assert out.getpixel((400, 599))[3] == 0


def test_peek_of_garbage_is_transparent_frame() -> None:
    out = decode_image(peek("garbage", 100))
    assert out.size == (800, 600)
    assert out.getextrema()[3] == (0, 0)


def test_combine_of_blank_canvases_is_blank() -> None:
    out = decode_image(combine([blank_canvas()] * 4))

    assert out.size == (800, 2400)
    assert out.getextrema()[3] == (0, 0)


def test_decode_refuses_decompression_bomb(bomb_png: str) -> None:
    assert len(bomb_png) < 100_000
    with pytest.raises(ImageDecodeError):
        decode_image(bomb_png)


def test_oversized_input_degrades_to_blank(bomb_png: str) -> None:
    framed = decode_image(peek(bomb_png, 100))
    assert framed.size == (800, 600)
    assert framed.getextrema()[3] == (0, 0)

    stacked = decode_image(combine([bomb_png]))
    assert stacked.size == (800, 600)


def test_check_drawing_accepts_only_canvas_sized_images(make_png, bomb_png: str) -> None:
    check_drawing(make_png())
    check_drawing(make_png(size=(400, 300)))

    for bad in (make_png(size=(801, 600)), bomb_png, "not-an-image"):
        with pytest.raises(ImageDecodeError):
            check_drawing(bad)
