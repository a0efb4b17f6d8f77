from __future__ import annotations

import pytest

from core.app_config import IMG2IMG, TXT2IMG
from core.command_args import (
    image_request_from_args,
    parse_args,
    parse_resize_mode,
)
from core.errors import ClientError
from core.models import ImageInput, ResizeMode

PHOTO = ImageInput("data:image/jpeg;base64,AAAA", width=640, height=480)


def test_parse_args_splits_text_and_options() -> None:
    args = parse_args('a castle at dusk Steps=30 negative="blurry, lowres" hires-steps=10')

    assert args.text == "a castle at dusk"
    assert args.options == {"steps": "30", "negative": "blurry, lowres", "hires_steps": "10"}


def test_parse_args_ignores_equals_inside_words() -> None:
    args = parse_args("x=1 a+b=c")
    assert args.options == {"x": "1"}
    assert args.text == "a+b=c"


def test_parse_args_rejects_unterminated_quote() -> None:
    with pytest.raises(ClientError):
        parse_args('negative="blurry')


def test_take_helpers_validate_values() -> None:
    args = parse_args("steps=abc cfg=x adetailer=maybe size=big")
    with pytest.raises(ClientError, match="steps must be a whole number"):
        args.take_int("steps")
    with pytest.raises(ClientError, match="cfg must be a number"):
        args.take_float("cfg")
    with pytest.raises(ClientError, match="adetailer must be on or off"):
        args.take_bool("adetailer")
    with pytest.raises(ClientError, match="768x512"):
        args.take_size("size")
    args.ensure_consumed()


def test_parse_resize_mode_accepts_numbers_names_and_labels() -> None:
    assert parse_resize_mode("2") is ResizeMode.FILL
    assert parse_resize_mode("crop") is ResizeMode.CROP
    assert parse_resize_mode("Latent upscale") is ResizeMode.LATENT
    with pytest.raises(ClientError):
        parse_resize_mode("7")


def test_txt2img_request_from_args() -> None:
    args = parse_args("a cat size=768x512 w=640 n=2 seed=5 model=a hires=1.5 adetailer=on")
    request = image_request_from_args(TXT2IMG, args)

    assert request.prompt == "a cat"
    assert (request.width, request.height) == (640, 512)
    assert request.count == 2
    assert request.seed == 5
    assert request.checkpoint == "a"
    assert request.hires_factor == 1.5
    assert request.enable_adetailer is True
    assert request.source_image is None


def test_img2img_request_from_args() -> None:
    args = parse_args('prompt="red hair" denoising=0.4 resize=fill')
    request = image_request_from_args(IMG2IMG, args, source_image=PHOTO)

    assert request.prompt == "red hair"
    assert request.source_image is PHOTO
    assert request.denoising_strength == 0.4
    assert request.resize_mode is ResizeMode.FILL


def test_controlnet_options_need_a_control_image() -> None:
    with pytest.raises(ClientError, match="ControlNet"):
        image_request_from_args(TXT2IMG, parse_args("cn=canny"))

    request = image_request_from_args(
        TXT2IMG, parse_args("cn=canny cn_weight=0.8"), control_image=PHOTO
    )
    (unit,) = request.controlnets
    assert (unit.image, unit.type_name, unit.weight) == (PHOTO, "canny", 0.8)


def test_unknown_and_command_specific_options_are_rejected() -> None:
    with pytest.raises(ClientError, match="Unknown option"):
        image_request_from_args(TXT2IMG, parse_args("a cat denoising=0.5"))
    with pytest.raises(ClientError, match="Unknown option"):
        image_request_from_args(IMG2IMG, parse_args("hires=2"), source_image=PHOTO)
