"""Concrete implementations for markup converters."""

import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import ConversionError

logger = logging.getLogger(__name__)


class Converter(ABC):
    """Interface for turning rendered markup into normalized text."""

    @abstractmethod
    def convert(self, raw_markup: str) -> str:
        """Converts raw markup into text suitable for an LLM context.

        Parameters
        ----------
        raw_markup : str
            Arbitrary markup, possibly large or malformed.

        Returns
        -------
        str
            Normalized text that keeps paragraph and heading structure.

        Raises
        ------
        ConversionError
            If the conversion failed. Implementations never substitute
            content on failure.
        """
        pass


class Pandoc(Converter):
    """Converts HTML to Markdown with the ``pandoc`` command line tool."""

    def __init__(
        self,
        executable: str = "pandoc",
        source_format: str = "html",
        target_format: str = "markdown",
        timeout: float = 30.0,
    ):
        self.executable = executable
        self.source_format = source_format
        self.target_format = target_format
        self.timeout = timeout

    def convert(self, raw_markup: str) -> str:
        binary = shutil.which(self.executable)
        if binary is None:
            raise ConversionError(
                f"{self.executable!r} not found on PATH",
                diagnostic=f"missing executable: {self.executable}",
            )

        with tempfile.TemporaryDirectory(prefix="contentchat-") as tmpdir:
            source = Path(tmpdir) / "content.html"
            target = Path(tmpdir) / "content.md"
            source.write_text(raw_markup, encoding="utf-8")

            try:
                result = subprocess.run(
                    [
                        binary,
                        "-f",
                        self.source_format,
                        "-t",
                        self.target_format,
                        str(source),
                        "-o",
                        str(target),
                    ],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as e:
                raise ConversionError(
                    f"pandoc timed out after {self.timeout}s", diagnostic=str(e)
                ) from e
            except OSError as e:
                raise ConversionError("pandoc could not be started", str(e)) from e

            if result.returncode != 0:
                raise ConversionError(
                    f"pandoc exited with status {result.returncode}",
                    diagnostic=result.stderr.strip(),
                )

            try:
                text = target.read_text(encoding="utf-8")
            except OSError as e:
                raise ConversionError("pandoc produced no output", str(e)) from e

        logger.debug("Converted %d chars of markup to %d chars", len(raw_markup), len(text))
        return text


class Passthrough(Converter):
    """Returns the markup untouched."""

    def convert(self, raw_markup: str) -> str:
        return raw_markup
