"""Tests for the declarative Ghostscript presets and the converter."""

from pathlib import Path

import pytest

from pdfconform.errors import ConversionError, ToolExecutionError
from pdfconform.tools.ghostscript import (
    GhostscriptConverter,
    bare_minimum_params,
    conservative_params,
    extreme_params,
    minimal_gray_params,
    page_raster_params,
    primary_params,
    size_gate_params,
)

SRC = Path("/tmp/in.pdf")
DST = Path("/tmp/out.pdf")


class TestPresets:
    def test_primary_forces_gray_300_and_full_reencode(self) -> None:
        args = primary_params().to_args(SRC, DST)

        assert args[0] == "-sDEVICE=pdfwrite"
        assert "-dSAFER" in args
        assert "-sColorConversionStrategy=Gray" in args
        assert "-dProcessColorModel=/DeviceGray" in args
        assert "-dColorImageDepth=8" in args
        assert "-dGrayImageDepth=8" in args
        for image_class in ("Color", "Gray", "Mono"):
            assert f"-d{image_class}ImageResolution=300" in args
            assert f"-dDownsample{image_class}Images=true" in args
        assert "-dPassThroughJPEGImages=false" in args
        assert "-dEmbedAllFonts=true" in args
        assert "-dSubsetFonts=true" in args
        assert "-dAutoRotatePages=/None" in args

    def test_output_and_source_come_last(self) -> None:
        args = primary_params().to_args(SRC, DST)
        assert args[-2] == f"-sOutputFile={DST}"
        assert args[-1] == str(SRC)

    def test_extreme_adds_explicit_codecs(self) -> None:
        args = extreme_params(quality=85).to_args(SRC, DST)

        assert "-dColorImageFilter=/DCTEncode" in args
        assert "-dGrayImageFilter=/DCTEncode" in args
        assert "-dMonoImageFilter=/CCITTFaxEncode" in args
        assert "-dAutoFilterColorImages=false" in args
        assert "-dJPEGQ=85" in args
        # Still carries the primary settings.
        assert "-dGrayImageResolution=300" in args

    def test_size_gate_lowers_color_and_gray_only(self) -> None:
        args = size_gate_params(150, 300).to_args(SRC, DST)

        assert "-dColorImageResolution=150" in args
        assert "-dGrayImageResolution=150" in args
        assert "-dMonoImageResolution=300" in args
        assert "-dSubsetFonts=true" in args

    def test_conservative_uses_ebook_pinned_to_300(self) -> None:
        args = conservative_params().to_args(SRC, DST)
        assert "-dPDFSETTINGS=/ebook" in args
        assert "-dColorImageResolution=300" in args

    def test_bare_minimum_only_forces_color_space(self) -> None:
        args = bare_minimum_params().to_args(SRC, DST)
        assert "-sColorConversionStrategy=Gray" in args
        assert not any("Resolution" in a for a in args)
        assert not any(a.startswith("-dCompatibilityLevel") for a in args)

    def test_minimal_gray_targets_gray_images(self) -> None:
        args = minimal_gray_params().to_args(SRC, DST)
        assert "-dGrayImageResolution=300" in args
        assert not any(a.startswith("-dColorImageResolution") for a in args)

    def test_page_raster_uses_gray_image_device(self) -> None:
        args = page_raster_params(300).to_args(SRC, DST)
        assert args[0] == "-sDEVICE=pdfimage8"
        assert "-r300" in args
        assert not any("ColorConversionStrategy" in a for a in args)

    def test_only_page_raster_renders_at_target_resolution(self) -> None:
        # pdfwrite presets only downsample.
        for params in (primary_params(), extreme_params()):
            args = params.to_args(SRC, DST)
            assert args[0] == "-sDEVICE=pdfwrite"
            assert not any(a.startswith("-r") for a in args)
            assert "-dColorImageResolution=300" in args
        assert page_raster_params().raster_resolution == 300

    def test_params_are_frozen(self) -> None:
        params = primary_params()
        with pytest.raises(Exception):
            params.device = "png16m"


class TestGhostscriptConverter:
    def test_convert_returns_destination(self, fake_runner, gs_output, tmp_path) -> None:
        def gs(args):
            gs_output(args).write_bytes(b"%PDF-1.4 converted")
            return ""

        runner = fake_runner({"ghostscript": gs})
        dst = tmp_path / "out.pdf"
        result = GhostscriptConverter(runner).convert(tmp_path / "in.pdf", dst, primary_params())

        assert result == dst
        assert dst.read_bytes() == b"%PDF-1.4 converted"

    def test_empty_output_is_a_conversion_error(self, fake_runner, gs_output, tmp_path) -> None:
        def gs(args):
            gs_output(args).write_bytes(b"")
            return ""

        runner = fake_runner({"ghostscript": gs})
        with pytest.raises(ConversionError):
            GhostscriptConverter(runner).convert(
                tmp_path / "in.pdf", tmp_path / "out.pdf", primary_params()
            )

    def test_tool_failure_propagates(self, fake_runner, tmp_path) -> None:
        runner = fake_runner({"ghostscript": ToolExecutionError("gs exited with status 1")})
        with pytest.raises(ToolExecutionError):
            GhostscriptConverter(runner).convert(
                tmp_path / "in.pdf", tmp_path / "out.pdf", primary_params()
            )

    def test_available_reflects_capabilities(self, fake_runner) -> None:
        assert GhostscriptConverter(fake_runner()).available is True
        assert GhostscriptConverter(fake_runner(missing=["ghostscript"])).available is False
