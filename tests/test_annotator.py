"""Tests for grid overlays and click markers."""
from __future__ import annotations

import logging

import numpy as np
from PIL import Image

from playprobe_runtime.capture import Frame, FramePhase
from playprobe_vision.annotator import annotate_grid, mark_click
from playprobe_vision.grid import GridSpec


def _black_frame(width: int = 1280, height: int = 720) -> Frame:
    return Frame.from_image(Image.new("RGB", (width, height)), phase=FramePhase.GAMEPLAY, label="test")


def test_annotate_grid_returns_new_annotated_frame() -> None:
    frame = _black_frame()
    original = frame.data

    annotated = annotate_grid(frame, GridSpec())

    assert annotated is not frame
    assert annotated.annotated is True
    assert frame.annotated is False
    assert frame.data == original
    assert annotated.size == frame.size
    assert annotated.phase is FramePhase.GAMEPLAY
    assert annotated.label == "test"


def test_annotate_grid_draws_semi_transparent_yellow_lines() -> None:
    annotated = annotate_grid(_black_frame(), GridSpec())
    pixels = np.asarray(annotated.to_image().convert("RGB"))

    # Column boundary between A and B sits at x=64; y=330 is mid-row, away from labels.
    r, g, b = pixels[330, 64]
    assert 100 < r < 160
    assert 100 < g < 160
    assert b < 10
    assert tuple(pixels[330, 40]) == (0, 0, 0)


def test_annotate_grid_labels_edges() -> None:
    pixels = np.asarray(annotate_grid(_black_frame(), GridSpec()).to_image().convert("RGB"))
    top_band = pixels[0:16, 20:44]
    left_band = pixels[20:40, 0:20]
    # Labels are drawn in bright yellow.
    assert (top_band[..., 0] > 200).any()
    assert (left_band[..., 0] > 200).any()


def test_annotate_grid_returns_input_on_undecodable_frame(caplog) -> None:
    broken = Frame(data=b"not a png", width=10, height=10)
    with caplog.at_level(logging.WARNING):
        result = annotate_grid(broken, GridSpec())
    assert result is broken
    assert "could not be decoded" in caplog.text


def test_mark_click_draws_red_marker_without_touching_source() -> None:
    frame = _black_frame(400, 300)
    marked = mark_click(frame, 200, 150, "start")

    assert marked is not frame
    assert marked.size == (400, 300)
    pixels = np.asarray(marked.to_image().convert("RGB"))
    red = (pixels[..., 0] > 200) & (pixels[..., 1] < 60) & (pixels[..., 2] < 60)
    assert red[140:161, 180:221].any()
    assert not red[0:50, 0:50].any()
    assert np.asarray(frame.to_image().convert("RGB")).max() == 0
