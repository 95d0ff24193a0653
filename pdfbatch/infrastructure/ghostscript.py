import logging
import os
import subprocess
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Mapping, Optional

from pdfbatch.domain.errors import (
    CompressionError,
    EngineExecutionFailed,
    EngineOutputMissing,
    GrayscaleConversionFailed,
)
from pdfbatch.domain.models import CompressionOptions, CompressionProfile, EngineEnvironment
from pdfbatch.infrastructure.engine_locator import build_process_env

PROFILE_PRESETS = {
    CompressionProfile.BALANCED: "/printer",
    CompressionProfile.AGGRESSIVE: "/ebook",
    CompressionProfile.MAXIMUM: "/screen",
}

GRAYSCALE_ARGUMENTS = (
    "-sDEVICE=pdfwrite",
    "-sProcessColorModel=DeviceGray",
    "-dOverrideICC",
    "-dUseCIEColor",
    "-dCompatibilityLevel=1.4",
    "-dNOPAUSE",
    "-dQUIET",
    "-dBATCH",
)

GRAYSCALE_SUFFIX = "_grayscale_temp"


def build_arguments(profile: CompressionProfile, options: CompressionOptions) -> List[str]:
    """Maps a profile and options to engine flags. Pure; the order is fixed."""
    dpi = options.target_dpi
    args = [
        "-sDEVICE=pdfwrite",
        f"-dPDFSETTINGS={PROFILE_PRESETS[profile]}",
        f"-dCompatibilityLevel={options.pdf_version}",
        "-dNOPAUSE",
        "-dQUIET",
        "-dBATCH",
        "-dAutoRotatePages=/None",
        "-dColorImageDownsampleType=/Bicubic",
        f"-dColorImageResolution={dpi}",
        "-dGrayImageDownsampleType=/Bicubic",
        f"-dGrayImageResolution={dpi}",
        "-dMonoImageDownsampleType=/Bicubic",
        f"-dMonoImageResolution={dpi}",
        "-dColorConversionStrategy=/sRGB",
        f"-dEmbedAllFonts={'true' if options.embed_fonts else 'false'}",
        "-dSubsetFonts=true",
        "-dOptimize=true",
        "-dDownsampleColorImages=true",
        "-dDownsampleGrayImages=true",
        "-dDownsampleMonoImages=true",
    ]

    if profile == CompressionProfile.MAXIMUM:
        args.extend(["-dCompressFonts=true", "-dCompressStreams=true"])

    if options.strip_metadata:
        args.extend(["-dPDFX", "-dUseCIEColor"])

    if options.generate_thumbnails:
        args.append("-dGenerateThumbnails=true")

    return args


def io_arguments(input_path: Path, output_path: Path) -> List[str]:
    return [f"-sOutputFile={output_path}", str(input_path)]


class GhostscriptInvoker:
    """Runs the engine once and classifies the result.

    Success means exit code 0 and the declared output file present; there is
    no retry here.
    """

    def __init__(self, debug: bool = False, base_env: Optional[Mapping[str, str]] = None):
        self.debug = debug
        self.base_env = base_env
        self.logger = logging.getLogger(__name__)

    def invoke(self, engine: EngineEnvironment, argv: List[str], output_path: Path) -> str:
        cmd = [str(engine.binary_path), *argv]
        filename = output_path.name
        start_time = time.monotonic() if self.debug else None

        if self.debug:
            self.logger.info(f"GS_START: {filename} (bundled={engine.bundled})")
            self.logger.debug(f"GS_CMD: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=build_process_env(engine, self.base_env),
                text=True,
                errors="replace",
            )
        except OSError as e:
            self.logger.error(f"GS_SPAWN_FAILED: {filename} ({e})")
            raise EngineExecutionFailed(None, str(e), path=output_path) from e

        output = result.stdout or ""
        if self.debug and start_time:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"GS_END: {filename} code={result.returncode} elapsed={elapsed:.2f}s")

        if result.returncode != 0:
            self.logger.warning(f"GS_FAILED: {filename} code={result.returncode}")
            raise EngineExecutionFailed(result.returncode, output, path=output_path)

        if not output_path.exists():
            self.logger.warning(f"GS_NO_OUTPUT: {filename}")
            raise EngineOutputMissing(output_path)

        return output

    def compress(
        self,
        engine: EngineEnvironment,
        input_path: Path,
        output_path: Path,
        profile: CompressionProfile,
        options: CompressionOptions,
    ) -> str:
        argv = build_arguments(profile, options) + io_arguments(input_path, output_path)
        return self.invoke(engine, argv, output_path)


class GrayscaleStage:
    """Optional colorspace pre-pass producing a grayscale intermediate."""

    def __init__(self, invoker: GhostscriptInvoker):
        self.invoker = invoker
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def intermediate_path(input_path: Path) -> Path:
        return input_path.with_name(f"{input_path.stem}{GRAYSCALE_SUFFIX}{input_path.suffix or '.pdf'}")

    def convert_to_grayscale(self, engine: EngineEnvironment, input_path: Path) -> Path:
        temp_path = self.intermediate_path(input_path)
        argv = list(GRAYSCALE_ARGUMENTS) + io_arguments(input_path, temp_path)
        try:
            self.invoker.invoke(engine, argv, temp_path)
        except CompressionError as e:
            _remove_quietly(temp_path, self.logger)
            raise GrayscaleConversionFailed(e, path=input_path) from e
        return temp_path

    @contextmanager
    def intermediate(self, engine: EngineEnvironment, input_path: Path) -> Iterator[Path]:
        """Yields the grayscale copy of `input_path` and deletes it on exit."""
        temp_path = self.convert_to_grayscale(engine, input_path)
        try:
            yield temp_path
        finally:
            _remove_quietly(temp_path, self.logger)


def _remove_quietly(path: Path, logger: logging.Logger) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to cleanup temp file {path}: {e}")
