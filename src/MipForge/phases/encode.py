"""Write finished mip chains to disk (PNG levels or KTX2/Basis via CLI tools)."""

import logging
import os
import platform
import shutil
import subprocess
import sys
import tempfile
import time
from typing import List, Optional

from ..config import CompressionFormat, CompressionSettings, OutputFormat
from ..core import MipChain, mip_level_path, save_image

logger = logging.getLogger("mipforge.encode")

# Known Windows NTSTATUS crash codes (as signed int32)
_CRASH_CODES_WIN = {
    -1073741819: "ACCESS_VIOLATION (0xC0000005)",
    -1073741795: "ILLEGAL_INSTRUCTION (0xC000001D)",
    -1073740791: "STACK_BUFFER_OVERRUN (0xC0000409)",
    -1073741571: "STACK_OVERFLOW (0xC00000FD)",
    -1073741515: "DLL_NOT_FOUND (0xC0000135)",
}

_TRANSIENT_MARKERS = (
    "sharing violation",
    "being used by another process",
    "temporarily unavailable",
    "resource busy",
    "permission denied",
)


class EncoderError(RuntimeError):
    """Raised when a mip chain cannot be written in the requested format."""


def _is_crash_code(returncode: int) -> Optional[str]:
    """Return a human-readable crash description, or None if not a crash."""
    if sys.platform == "win32":
        desc = _CRASH_CODES_WIN.get(returncode)
        if desc:
            return desc
        if returncode < 0:
            return f"NTSTATUS 0x{returncode & 0xFFFFFFFF:08X}"
        return None
    if returncode < 0:
        sig_num = -returncode
        try:
            import signal
            return f"{signal.Signals(sig_num).name} (signal {sig_num})"
        except ValueError:
            return f"signal {sig_num}"
    return None


def _forward_output(text: str, tool_label: str, stream_name: str,
                    level: int, max_lines: int = 80) -> None:
    """Log subprocess output line-by-line at the given level."""
    if not text or not text.strip():
        return
    lines = text.splitlines()
    if len(lines) > max_lines:
        logger.log(level, "[%s] ... %d earlier %s lines omitted",
                   tool_label, len(lines) - max_lines, stream_name)
        lines = lines[-max_lines:]
    for line in lines:
        logger.log(level, "[%s] %s: %s", tool_label, stream_name, line[:500])


def _is_transient_failure(text: str, returncode: int) -> bool:
    msg = (text or "").lower()
    if any(marker in msg for marker in _TRANSIENT_MARKERS):
        return True
    return returncode in (1, 2) and ("lock" in msg or "busy" in msg)


class TextureEncoder:
    """Base class: turn a MipChain into a file at ``output_path``."""

    extension = ""

    def encode(self, chain: MipChain, output_path: str, srgb: bool = False) -> str:
        raise NotImplementedError


class PngMipEncoder(TextureEncoder):
    """One PNG per level: ``out.png``, ``out_mip1.png``, ``out_mip2.png`` ..."""

    extension = ".png"

    def encode(self, chain: MipChain, output_path: str, srgb: bool = False) -> str:
        paths = self.write_levels(chain, output_path)
        logger.debug("Wrote %d PNG levels for %s", len(paths), output_path)
        return paths[0]

    @staticmethod
    def write_levels(chain: MipChain, output_path: str) -> List[str]:
        paths = []
        for level_idx, level in enumerate(chain):
            path = mip_level_path(output_path, level_idx, ".png")
            save_image(level, path)
            paths.append(path)
        return paths


class KtxToolEncoder(TextureEncoder):
    """Encode through ``toktx`` (KTX2) or ``basisu`` (.basis)."""

    _MAX_ATTEMPTS = 3

    def __init__(self, settings: Optional[CompressionSettings] = None):
        self.settings = settings or CompressionSettings()
        self._tool_path: Optional[str] = None
        self._tool_resolved = False

    @property
    def extension(self) -> str:
        return self.settings.extension

    @property
    def _tool_names(self) -> tuple:
        if self.settings.output_format == OutputFormat.BASIS:
            return ("basisu",)
        return ("toktx",)

    def resolve_tool(self) -> Optional[str]:
        """Resolve and cache the encoder executable."""
        if self._tool_resolved:
            return self._tool_path
        self._tool_resolved = True

        tool_path = self.settings.tool_path or None
        if tool_path and not os.path.isfile(tool_path):
            logger.warning("Configured tool_path does not exist: %s", tool_path)
            tool_path = None
        if not tool_path:
            for name in self._tool_names:
                tool_path = shutil.which(name)
                if tool_path:
                    break
        if not tool_path:
            from .. import BIN_DIR
            exe_suffix = ".exe" if platform.system() == "Windows" else ""
            candidates = []
            for name in self._tool_names:
                for ktx_dir in sorted(BIN_DIR.glob("KTX-Software*"), reverse=True):
                    candidates.append(ktx_dir / f"{name}{exe_suffix}")
                candidates.append(BIN_DIR / f"{name}{exe_suffix}")
            for candidate in candidates:
                if candidate.is_file():
                    tool_path = str(candidate)
                    break

        if tool_path:
            logger.info("Using encoder tool: %s", tool_path)
        self._tool_path = tool_path
        return tool_path

    def build_command(self, tool_path: str, output_path: str,
                      level_paths: List[str], srgb: bool) -> List[str]:
        s = self.settings
        if self.settings.output_format == OutputFormat.BASIS:
            cmd = [tool_path, "-output_file", output_path]
            if s.compression_format == CompressionFormat.UASTC:
                cmd += ["-uastc", "-uastc_level", str(s.uastc_quality)]
                if s.use_uastc_rdo:
                    cmd += ["-uastc_rdo_l", f"{s.uastc_rdo_quality:g}"]
            else:
                cmd += ["-comp_level", str(s.compression_level), "-q", str(s.quality_level)]
            if not srgb:
                cmd.append("-linear")
            # basisu cannot take precomputed levels; only the base level is stored.
            cmd.append(level_paths[0])
            return cmd

        cmd = [tool_path, "--t2"]
        if s.compression_format == CompressionFormat.UASTC:
            cmd += ["--encode", "uastc", "--uastc_quality", str(s.uastc_quality)]
            if s.use_uastc_rdo:
                cmd += ["--uastc_rdo_l", f"{s.uastc_rdo_quality:g}"]
        else:
            cmd += ["--encode", "etc1s", "--clevel", str(s.compression_level),
                    "--qlevel", str(s.quality_level)]
        if s.zstd_level > 0:
            cmd += ["--zcmp", str(s.zstd_level)]
        cmd += ["--assign_oetf", "srgb" if srgb else "linear"]
        cmd += ["--levels", str(len(level_paths)), output_path]
        cmd.extend(level_paths)
        return cmd

    def encode(self, chain: MipChain, output_path: str, srgb: bool = False) -> str:
        tool_path = self.resolve_tool()
        if not tool_path:
            raise EncoderError(
                f"{'/'.join(self._tool_names)} not found. Set compression.tool_path "
                f"or install KTX-Software on PATH."
            )
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="mipforge_") as tmp_dir:
            level_paths = PngMipEncoder.write_levels(
                chain, os.path.join(tmp_dir, "level.png"),
            )
            cmd = self.build_command(tool_path, output_path, level_paths, srgb)
            self._run_tool(cmd, os.path.basename(tool_path), output_path)
        if not os.path.isfile(output_path):
            raise EncoderError(f"Encoder reported success but {output_path} is missing")
        return output_path

    def _run_tool(self, cmd: List[str], tool_label: str, target: str):
        """Run the encoder, retrying transient I/O failures."""
        logger.debug("Running %s: %s", tool_label, " ".join(cmd))
        timeout = max(1, int(self.settings.tool_timeout_seconds))
        for attempt in range(1, self._MAX_ATTEMPTS + 1):
            try:
                proc = subprocess.run(
                    cmd, capture_output=True, timeout=timeout, text=True,
                    encoding="utf-8", errors="replace",
                )
            except FileNotFoundError as exc:
                raise EncoderError(f"{tool_label} not found: {cmd[0]}") from exc
            except PermissionError as exc:
                raise EncoderError(f"{tool_label} is not executable: {cmd[0]}") from exc
            except subprocess.TimeoutExpired as exc:
                raise EncoderError(
                    f"{tool_label} timed out after {timeout}s for {target}"
                ) from exc

            if proc.returncode == 0:
                _forward_output(proc.stdout, tool_label, "stdout", logging.DEBUG)
                _forward_output(proc.stderr, tool_label, "stderr", logging.DEBUG)
                return proc

            _forward_output(proc.stdout, tool_label, "stdout", logging.ERROR)
            _forward_output(proc.stderr, tool_label, "stderr", logging.ERROR)
            crash = _is_crash_code(proc.returncode)
            merged = f"{proc.stdout or ''}\n{proc.stderr or ''}"
            if (attempt < self._MAX_ATTEMPTS and not crash
                    and _is_transient_failure(merged, proc.returncode)):
                delay = 0.3 * attempt
                logger.warning(
                    "%s retrying after transient failure (%s), attempt %d/%d in %.1fs",
                    tool_label, target, attempt + 1, self._MAX_ATTEMPTS, delay,
                )
                time.sleep(delay)
                continue
            if crash:
                raise EncoderError(
                    f"{tool_label} crashed writing {target}: {crash} "
                    f"(exit code {proc.returncode})"
                )
            raise EncoderError(
                f"{tool_label} failed for {target} with exit code {proc.returncode}"
            )
        raise EncoderError(f"{tool_label} failed for {target}")


def create_encoder(settings: Optional[CompressionSettings] = None) -> TextureEncoder:
    """Pick the encoder for ``settings.output_format``."""
    settings = settings or CompressionSettings()
    if settings.output_format == OutputFormat.PNG:
        return PngMipEncoder()
    return KtxToolEncoder(settings)
