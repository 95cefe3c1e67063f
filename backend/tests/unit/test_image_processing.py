import base64
import io

import pytest
from PIL import Image

from lecture_live.schemas.lecture import ImageOptimizationSettings, Slide
from lecture_live.services.image_processing import (
    ImageProcessingError,
    convert_png_to_jpeg,
    fit_within,
    is_legacy_encoding,
    migrate_slide_images,
    optimize_image_data_url,
    split_data_url,
)


def _data_url(mode: str = "RGB", size=(800, 400), color=(10, 120, 200), fmt: str = "PNG") -> str:
    image = Image.new(mode, size, color=color)
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    mime = "image/png" if fmt == "PNG" else "image/jpeg"
    return f"data:{mime};base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _open(data_url: str) -> Image.Image:
    _, payload = split_data_url(data_url)
    return Image.open(io.BytesIO(base64.b64decode(payload)))


def test_split_data_url_handles_bare_base64() -> None:
    assert split_data_url("data:image/webp;base64,AAAA") == ("image/webp", "AAAA")
    assert split_data_url("AAAA") == ("image/png", "AAAA")


def test_fit_within_preserves_aspect_and_never_upscales() -> None:
    assert fit_within(1600, 900, 800) == (800, 450)
    assert fit_within(900, 1600, 800) == (450, 800)
    assert fit_within(300, 200, 800) == (300, 200)


def test_optimize_downscales_and_grayscales() -> None:
    out = optimize_image_data_url(_data_url(size=(1536, 768)), ImageOptimizationSettings(max_dimension=768, grayscale=True))

    image = _open(out)
    assert out.startswith("data:image/png;base64,")
    assert image.size == (768, 384)
    assert image.mode == "L"


def test_optimize_keeps_alpha_when_grayscale() -> None:
    out = optimize_image_data_url(
        _data_url(mode="RGBA", size=(100, 50), color=(0, 0, 0, 0)),
        ImageOptimizationSettings(max_dimension=768, grayscale=True),
    )
    assert _open(out).mode == "LA"


def test_optimize_rejects_garbage() -> None:
    with pytest.raises(ImageProcessingError):
        optimize_image_data_url("data:image/png;base64,bm90IGFuIGltYWdl", ImageOptimizationSettings())
    with pytest.raises(ImageProcessingError):
        optimize_image_data_url("data:image/png;base64,", ImageOptimizationSettings())


def test_convert_png_to_jpeg_flattens_transparency() -> None:
    out = convert_png_to_jpeg(_data_url(mode="RGBA", size=(20, 20), color=(255, 0, 0, 0)), quality=80)

    image = _open(out)
    assert out.startswith("data:image/jpeg;base64,")
    assert image.format == "JPEG"
    r, g, b = image.convert("RGB").getpixel((10, 10))
    # fully transparent pixels land on white
    assert min(r, g, b) > 240


def test_migrate_slide_images_is_best_effort_per_slide() -> None:
    slides = [
        Slide(page_number=1, image_data_url=_data_url(size=(40, 30))),
        Slide(page_number=2, image_data_url="data:image/png;base64,Y29ycnVwdA=="),
        Slide(page_number=3, image_data_url=_data_url(size=(40, 30), fmt="JPEG")),
    ]

    result = migrate_slide_images(slides, quality=80)

    assert result.was_modified
    assert set(result.converted) == {1}
    assert result.failed_pages == [2]
    assert not is_legacy_encoding(result.converted[1])
    # inputs are not mutated
    assert is_legacy_encoding(slides[0].image_data_url)


def test_migrate_slide_images_noop_when_already_current() -> None:
    result = migrate_slide_images([Slide(page_number=1, image_data_url="data:image/jpeg;base64,AAAA")])
    assert not result.was_modified
    assert result.failed_pages == []
