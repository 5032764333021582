"""External encoder invocation for audio transcoding.

One encoder process is started per invocation. Input bytes are pumped into
its stdin from a helper thread while the caller consumes stdout, so neither
side can dead-lock on a full pipe.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence

from . import config_constants
from .cancel import CancelScope
from .exceptions import PoddleError, ProcessError, RequestCancelled

logger = logging.getLogger(__name__)

# Ogg/Opus at 16 kbit/s tuned for speech
DEFAULT_ENCODER_ARGS = (
    "-hide_banner",
    "-loglevel",
    "warning",
    "-i",
    "-",
    "-f",
    "opus",
    "-vn",
    "-c:a",
    "libopus",
    "-b:a",
    "16k",
    "-application",
    "voip",
    "-",
)
OUTPUT_CONTENT_TYPE = "audio/ogg"
OUTPUT_CHUNK_SIZE = 1024 * 32
PUMP_JOIN_TIMEOUT_SECONDS = 5.0


class _CloseOnce:
    """Wrap a byte source so that ``close()`` reaches it exactly once."""

    def __init__(self, source: Iterable[bytes]) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._closed = False

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._source)

    def abort(self) -> None:
        """Unblock the pump's pending read, leaving ``close()`` to the pump.

        Sources without an ``abort()`` method are closed instead.
        """
        abort = getattr(self._source, "abort", None)
        if abort is None:
            self.close()
            return
        abort()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        close = getattr(self._source, "close", None)
        if close is not None:
            close()


class _EncoderRun:
    """State of one running encoder process."""

    def __init__(self, proc: subprocess.Popen, source: _CloseOnce, chunk_size: int) -> None:
        self.proc = proc
        self.source = source
        self.chunk_size = chunk_size
        self.cancelled = False
        self.broken_pipe = False
        self.input_error: Optional[BaseException] = None
        self._kill_lock = threading.Lock()
        self.pump = threading.Thread(target=self._pump, name=f"encoder-pump-{proc.pid}", daemon=True)

    def kill(self) -> None:
        with self._kill_lock:
            if self.proc.poll() is None:
                try:
                    self.proc.kill()
                except OSError:
                    pass  # exited between poll() and kill()

    def cancel(self) -> None:
        self.cancelled = True
        self.kill()
        self.source.abort()

    def _pump(self) -> None:
        stdin = self.proc.stdin
        assert stdin is not None
        try:
            for chunk in self.source:
                if self.cancelled:
                    break
                if chunk:
                    stdin.write(chunk)
        except (BrokenPipeError, ValueError):
            # ValueError: stdin was closed under us after a kill
            self.broken_pipe = True
        except Exception as exc:  # noqa: BLE001
            # Partial input must not be encoded into output that looks complete
            self.input_error = exc
            self.kill()
        finally:
            try:
                stdin.close()
            except (BrokenPipeError, OSError):
                self.broken_pipe = True
            self.source.close()

    def chunks(self) -> Iterator[bytes]:
        stdout = self.proc.stdout
        assert stdout is not None
        while True:
            try:
                chunk = stdout.read1(self.chunk_size)
            except (OSError, ValueError) as exc:
                if self.cancelled:
                    raise RequestCancelled("transcode cancelled") from exc
                raise ProcessError(f"reading encoder output failed: {exc}") from exc
            if not chunk:
                break
            yield chunk
        returncode = self.proc.wait()
        self.pump.join(PUMP_JOIN_TIMEOUT_SECONDS)
        self._check(returncode)

    def _check(self, returncode: int) -> None:
        if self.cancelled:
            raise RequestCancelled("transcode cancelled")
        if self.input_error is not None:
            if isinstance(self.input_error, PoddleError):
                raise self.input_error
            raise ProcessError(
                f"reading encoder input failed: {self.input_error}", returncode=returncode
            ) from self.input_error
        if returncode != 0:
            raise ProcessError(f"encoder exited with status {returncode}", returncode=returncode)
        if self.broken_pipe:
            raise ProcessError("encoder stopped reading its input", returncode=returncode)

    def close(self) -> None:
        self.kill()
        self.proc.wait()
        if self.pump.is_alive():
            self.source.abort()
        self.pump.join(PUMP_JOIN_TIMEOUT_SECONDS)
        if self.pump.is_alive():
            logger.warning("Encoder input pump for pid %s did not stop", self.proc.pid)
        self.source.close()
        if self.proc.stdout is not None:
            self.proc.stdout.close()


class Transcoder:
    """Runs the external encoder over a byte stream.

    Example:
        >>> transcoder = Transcoder("ffmpeg")
        >>> with transcoder.open(upstream_body) as chunks:
        ...     for chunk in chunks:
        ...         client.write(chunk)
    """

    def __init__(
        self,
        ffmpeg_path: str = config_constants.DEFAULT_FFMPEG_PATH,
        args: Optional[Sequence[str]] = None,
        chunk_size: int = OUTPUT_CHUNK_SIZE,
        stderr: Any = None,
    ) -> None:
        """Initialize the transcoder.

        Args:
            ffmpeg_path: Encoder executable
            args: Encoder arguments (defaults to Ogg/Opus 16k voice)
            chunk_size: Maximum size of yielded output chunks
            stderr: Where encoder diagnostics go; None inherits the host's stderr
        """
        self.ffmpeg_path = ffmpeg_path
        self.args: List[str] = list(DEFAULT_ENCODER_ARGS if args is None else args)
        self.chunk_size = chunk_size
        self.stderr = stderr
        self.content_type = OUTPUT_CONTENT_TYPE

    @classmethod
    def from_config(cls, cfg: Any) -> "Transcoder":
        return cls(ffmpeg_path=cfg.ffmpeg_path)

    @property
    def command(self) -> List[str]:
        return [self.ffmpeg_path, *self.args]

    @contextmanager
    def open(
        self, source: Iterable[bytes], scope: Optional[CancelScope] = None
    ) -> Iterator[Iterator[bytes]]:
        """Start the encoder over ``source`` and yield its output chunks.

        ``source`` is an iterable of byte chunks; if it has a ``close()``
        method it is called exactly once on every exit path, including
        failure to start the encoder. Exhausting the yielded iterator waits
        for the encoder to exit and checks its status.

        Args:
            source: Input byte chunks
            scope: Optional cancellation scope; cancelling it kills the encoder

        Raises:
            ProcessError: If the encoder cannot be started, exits non-zero, or
                stops reading its input
            RequestCancelled: If ``scope`` was cancelled mid-stream
        """
        wrapped = _CloseOnce(source)
        try:
            proc = subprocess.Popen(  # nosec B603
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=self.stderr,
            )
        except (OSError, ValueError) as exc:
            wrapped.close()
            raise ProcessError(
                f"starting {self.ffmpeg_path} failed: {exc}",
                suggestion="Install ffmpeg or point FFMPEG_PATH/--ffmpeg-path at it",
            ) from exc

        logger.debug("Started encoder pid %s: %s", proc.pid, " ".join(self.command))
        run = _EncoderRun(proc, wrapped, self.chunk_size)
        remove_callback: Callable[[], None] = lambda: None
        try:
            run.pump.start()
            if scope is not None:
                remove_callback = scope.add_callback(run.cancel)
            yield run.chunks()
        finally:
            remove_callback()
            run.close()
            logger.debug("Encoder pid %s exited with status %s", proc.pid, proc.returncode)
