# pdf.py

import logging
import os
import shutil
import subprocess
import tempfile
from typing import Protocol

from .errors import ExtractionFailed, UnsupportedFormat

logger = logging.getLogger(__name__)

PDFTOTEXT_TIMEOUT = 60


class PdfTextExtractor(Protocol):
    def extract_text(self, data: bytes, max_pages: int) -> str:
        ...


class PdftotextExtractor:
    """
    Extracts PDF text with poppler's `pdftotext` binary.
    Blocking; callers run it in an executor.
    """

    def __init__(self, binary: str = "pdftotext", timeout: int = PDFTOTEXT_TIMEOUT):
        self.binary = binary
        self.timeout = timeout

    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def extract_text(self, data: bytes, max_pages: int) -> str:
        if not data.startswith(b"%PDF"):
            raise UnsupportedFormat("not a PDF file")
        if not self.available():
            raise UnsupportedFormat(f"{self.binary} is not installed")

        with tempfile.TemporaryDirectory() as tmp:
            in_path = os.path.join(tmp, "doc.pdf")
            out_path = os.path.join(tmp, "doc.txt")
            with open(in_path, "wb") as f:
                f.write(data)
            cmd = [
                self.binary, "-q", "-layout", "-enc", "UTF-8",
                "-f", "1", "-l", str(max_pages),
                in_path, out_path,
            ]
            try:
                subprocess.run(cmd, check=True, timeout=self.timeout)
            except subprocess.CalledProcessError as e:
                raise ExtractionFailed(f"pdftotext exited with status {e.returncode}")
            except subprocess.TimeoutExpired:
                raise ExtractionFailed(f"pdftotext timed out after {self.timeout}s")
            with open(out_path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
