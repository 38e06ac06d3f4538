"""Container runtime CLI wrapper for tidytop."""

import re
import shlex
import shutil
import subprocess
from dataclasses import dataclass

from tidytop.logging_setup import logger

IMAGE_FORMAT = "{{.ID}}\t{{.Repository}}:{{.Tag}}\t{{.Size}}"

_SIZE_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([KMGTP]?i?B)?\s*$", re.IGNORECASE)

_SIZE_FACTORS = {
    "B": 1,
    "KB": 1000,
    "MB": 1000**2,
    "GB": 1000**3,
    "TB": 1000**4,
    "PB": 1000**5,
    "KIB": 1024,
    "MIB": 1024**2,
    "GIB": 1024**3,
    "TIB": 1024**4,
    "PIB": 1024**5,
}


class RuntimeUnavailable(Exception):
    """The runtime binary is missing, timed out, failed, or printed garbage."""


class ImageNotFound(Exception):
    """The image to remove no longer exists."""


class RuntimeCommandError(Exception):
    """The runtime rejected a removal for some other reason."""


@dataclass(slots=True, frozen=True)
class ImageEntry:
    """One row of the runtime's image listing."""

    image_id: str
    name: str
    size: int


def parse_size_to_bytes(s: str) -> int | None:
    """Parse sizes like ``1.2GB``, ``13.3kB`` or ``512MiB``."""
    if not s:
        return None
    m = _SIZE_RE.match(s)
    if not m:
        return None
    val = float(m.group(1))
    unit = (m.group(2) or "B").upper()
    if unit not in _SIZE_FACTORS:
        return None
    return round(val * _SIZE_FACTORS[unit])


def parse_image_listing(output: str) -> list[ImageEntry]:
    """
    Parse tab-separated ``id, repo:tag, size`` rows.

    Images tagged more than once are listed once under their first name.

    Raises:
        RuntimeUnavailable: if any non-empty row cannot be parsed.
    """
    entries: list[ImageEntry] = []
    seen: set[str] = set()
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 3:
            raise RuntimeUnavailable(f"unparsable image row: {line!r}")
        image_id, name, size_str = parts[0].strip(), parts[1].strip(), parts[2].strip()
        size = parse_size_to_bytes(size_str)
        if not image_id or size is None:
            raise RuntimeUnavailable(f"unparsable image row: {line!r}")
        if image_id in seen:
            continue
        seen.add(image_id)
        entries.append(ImageEntry(image_id=image_id, name=name, size=size))
    return entries


class ContainerRuntime:
    """Lists and removes images through the runtime's command line."""

    def __init__(self, binary: str = "docker", timeout: float = 15.0) -> None:
        self.binary = binary
        self.timeout = timeout

    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        logger.debug(f"Executing command: {' '.join(shlex.quote(x) for x in cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise RuntimeUnavailable(f"{self.binary} not found") from e
        except subprocess.TimeoutExpired as e:
            raise RuntimeUnavailable(f"{self.binary} timed out after {self.timeout}s") from e
        logger.debug(f"Command completed with return code: {result.returncode}")
        return result

    def list_images(self) -> list[ImageEntry]:
        """
        List images with the runtime-reported size.

        Raises:
            RuntimeUnavailable: on missing binary, non-zero exit or bad output.
        """
        result = self._run(["images", "--format", IMAGE_FORMAT])
        if result.returncode != 0:
            raise RuntimeUnavailable(
                f"{self.binary} images exited with {result.returncode}: {result.stderr.strip()}"
            )
        return parse_image_listing(result.stdout)

    def remove_image(self, image_id: str) -> None:
        """
        Remove one image by id.

        Raises:
            ImageNotFound: the image is already gone.
            RuntimeUnavailable: the runtime cannot be invoked.
            RuntimeCommandError: any other refusal (image in use, etc.).
        """
        result = self._run(["rmi", image_id])
        if result.returncode == 0:
            return
        stderr = (result.stderr or "").strip()
        lowered = stderr.lower()
        if "no such image" in lowered or "image not known" in lowered:
            raise ImageNotFound(image_id)
        raise RuntimeCommandError(stderr or f"{self.binary} rmi exited with {result.returncode}")
