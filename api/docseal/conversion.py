"""
Conversion Engines
==================
Turn a populated DOCX into PDF bytes.

- LocalProcessEngine: LibreOffice (``soffice``) in a subprocess
- RemoteServiceEngine: OnlyOffice-compatible conversion service over HTTP

The active engine is chosen once, at startup, by ``CONVERTER_ENGINE``.
"""

import os
import shlex
import shutil
import signal
import subprocess
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

import jwt
import requests

from . import config, pathguard
from .errors import ConfigError, ConversionError
from .logger import get_logger
from .staging import Stager, build_stager

log = get_logger(__name__)

PDF_MAGIC = b"%PDF-"

# (message, transient)
ENGINE_ERRORS = {
    -1: ("unknown error", True),
    -2: ("conversion timeout", True),
    -3: ("conversion error", False),
    -4: ("error while downloading the document", True),
    -5: ("document is password protected", False),
    -6: ("error while accessing the conversion result database", True),
    -7: ("input error, document is corrupted", False),
    -8: ("invalid token", False),
    -9: ("unsupported format", False),
    -10: ("size limit exceeded", False),
}
TRANSIENT_HTTP_STATUSES = {408, 429, 500, 502, 503, 504}
JWT_VALIDITY = timedelta(minutes=5)


def _check_artifact(engine: str, data: Optional[bytes]) -> bytes:
    if not data:
        raise ConversionError(engine, "artifact was not produced")
    if not data.startswith(PDF_MAGIC):
        raise ConversionError(engine, "artifact is not a PDF document")
    return data


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    if proc.poll() is None:
        proc.wait()


class ConversionEngine(ABC):
    name = "abstract"

    @abstractmethod
    def convert(self, document: bytes, filename: str = "document.docx") -> bytes:
        """Return the fixed-layout (PDF) rendition of ``document``."""


class LocalProcessEngine(ConversionEngine):
    name = "local"

    def __init__(self, command: Optional[Sequence[str]] = None, timeout: Optional[float] = None, workdir: Optional[str] = None):
        self.command = list(command) if command else shlex.split(config.LOCAL_CONVERTER_BIN)
        self.timeout = timeout or config.LOCAL_CONVERTER_TIMEOUT
        self.workdir = workdir or config.TEMP_DIR

    def _args(self, tmp: Path, source: Path):
        return self.command + [
            "--headless",
            "--norestore",
            # private profile so parallel conversions do not fight over one lock
            f"-env:UserInstallation={(tmp / 'profile').as_uri()}",
            "--convert-to", "pdf",
            "--outdir", str(tmp),
            str(source),
        ]

    def _run(self, args):
        """
        Run the converter in its own process group and return (returncode, stderr).

        soffice is a launcher that forks the real converter, so on timeout the
        whole group is killed, not just the direct child.
        """
        try:
            proc = subprocess.Popen(
                args, stdout=subprocess.PIPE, stderr=subprocess.PIPE, start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise ConversionError(self.name, f"converter binary not found: {self.command[0]}") from exc
        try:
            _, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            _kill_group(proc)
            proc.communicate()
            raise ConversionError(self.name, f"converter timed out after {self.timeout:g}s") from exc
        _kill_group(proc)
        return proc.returncode, stderr

    def convert(self, document: bytes, filename: str = "document.docx") -> bytes:
        base = pathguard.resolve(self.workdir)
        os.makedirs(base, exist_ok=True)
        tmp = Path(tempfile.mkdtemp(prefix="convert_", dir=base))
        try:
            ext = Path(filename).suffix.lower() or ".docx"
            source = tmp / f"input{ext}"
            source.write_bytes(document)
            started = time.monotonic()
            returncode, stderr = self._run(self._args(tmp, source))
            if returncode != 0:
                stderr = (stderr or b"").decode("utf-8", "replace").strip()
                raise ConversionError(self.name, f"converter exited with status {returncode}: {stderr[:500]}")

            produced = tmp / f"{source.stem}.pdf"
            if not produced.is_file():
                raise ConversionError(self.name, "artifact was not produced")
            data = _check_artifact(self.name, produced.read_bytes())
            log.info("Converted {} with {} in {:.1f}s", filename, self.command[0], time.monotonic() - started)
            return data
        finally:
            shutil.rmtree(tmp, ignore_errors=True)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0

    @property
    def attempts(self) -> int:
        return 1 + max(0, self.max_retries)

    def delay(self, retry_number: int) -> float:
        """Backoff before retry ``retry_number`` (0-based)."""
        return min(self.max_delay, self.base_delay * (self.factor ** retry_number))


class RemoteServiceEngine(ConversionEngine):
    name = "remote"
    endpoint = "/ConvertService.ashx"

    def __init__(
        self,
        base_url: str,
        stager: Stager,
        retry: RetryPolicy,
        jwt_secret: Optional[str] = None,
        async_mode: bool = False,
        timeout: float = 60.0,
        poll_interval: float = 2.0,
        issuer: str = "docseal",
        audience: str = "onlyoffice",
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not base_url:
            raise ConfigError("REMOTE_SERVER_URL is required when CONVERTER_ENGINE=remote")
        self.base_url = base_url.rstrip("/")
        self.stager = stager
        self.retry = retry
        self.jwt_secret = jwt_secret
        self.async_mode = async_mode
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.issuer = issuer
        self.audience = audience
        self.session = session or requests.Session()
        self.sleep = sleep
        self.clock = clock

    def convert(self, document: bytes, filename: str = "document.docx") -> bytes:
        deadline = self.clock() + self.timeout
        with self.stager.stage(document, filename) as url:
            last_error: Optional[ConversionError] = None
            for attempt in range(self.retry.attempts):
                if attempt:
                    pause = self.retry.delay(attempt - 1)
                    if self.clock() + pause >= deadline:
                        break
                    log.warning("Retrying remote conversion of {} in {:.1f}s ({}/{}): {}",
                                filename, pause, attempt, self.retry.max_retries, last_error)
                    self.sleep(pause)
                try:
                    return self._attempt(url, filename, deadline)
                except ConversionError as exc:
                    last_error = exc
                    if not exc.transient:
                        raise
            if last_error is None:
                raise ConversionError(self.name, "no conversion attempt was made")
            raise last_error

    def _token(self, payload: dict) -> str:
        now = datetime.now(timezone.utc)
        claims = dict(payload, iss=self.issuer, aud=self.audience, iat=now, exp=now + JWT_VALIDITY)
        return jwt.encode(claims, self.jwt_secret, algorithm="HS256")

    def _request(self, payload: dict, deadline: float) -> dict:
        remaining = deadline - self.clock()
        if remaining <= 0:
            raise ConversionError(self.name, "overall conversion deadline exceeded", code=-2)
        body = dict(payload)
        headers = {"Accept": "application/json"}
        if self.jwt_secret:
            token = self._token(payload)
            body["token"] = token
            headers["Authorization"] = f"Bearer {token}"
        try:
            resp = self.session.post(f"{self.base_url}{self.endpoint}", json=body, headers=headers, timeout=remaining)
        except requests.Timeout as exc:
            raise ConversionError(self.name, f"request timed out: {exc}", transient=True) from exc
        except requests.RequestException as exc:
            raise ConversionError(self.name, f"request failed: {exc}", transient=True) from exc

        if not 200 <= resp.status_code < 300:
            raise ConversionError(
                self.name,
                f"HTTP {resp.status_code} from conversion service",
                transient=resp.status_code in TRANSIENT_HTTP_STATUSES,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ConversionError(self.name, "malformed response from conversion service") from exc
        if not isinstance(data, dict):
            raise ConversionError(self.name, "malformed response from conversion service")

        if data.get("error") is not None:
            try:
                code = int(data["error"])
            except (TypeError, ValueError):
                raise ConversionError(self.name, f"unrecognized error value: {data['error']!r}")
            message, transient = ENGINE_ERRORS.get(code, ("unknown error", False))
            raise ConversionError(self.name, message, code=code, transient=transient)
        return data

    def _attempt(self, url: str, filename: str, deadline: float) -> bytes:
        ext = Path(filename).suffix.lstrip(".").lower() or "docx"
        payload = {
            "async": self.async_mode,
            "filetype": ext,
            "key": uuid.uuid4().hex,
            "outputtype": "pdf",
            "title": filename,
            "url": url,
        }
        data = self._request(payload, deadline)
        while not data.get("endConvert"):
            if not self.async_mode:
                raise ConversionError(self.name, "service answered without a finished conversion", transient=True)
            if self.clock() + self.poll_interval >= deadline:
                raise ConversionError(self.name, f"conversion did not finish within {self.timeout:g}s", code=-2)
            log.debug("Conversion of {} at {}%", filename, data.get("percent", 0))
            self.sleep(self.poll_interval)
            data = self._request(payload, deadline)

        file_url = data.get("fileUrl")
        if not file_url:
            raise ConversionError(self.name, "artifact was not produced")
        return _check_artifact(self.name, self._download(file_url, deadline))

    def _download(self, file_url: str, deadline: float) -> bytes:
        remaining = deadline - self.clock()
        if remaining <= 0:
            raise ConversionError(self.name, "overall conversion deadline exceeded", code=-2)
        try:
            resp = self.session.get(file_url, timeout=remaining)
        except requests.RequestException as exc:
            raise ConversionError(self.name, f"artifact download failed: {exc}", transient=True) from exc
        if not 200 <= resp.status_code < 300:
            raise ConversionError(
                self.name,
                f"HTTP {resp.status_code} while downloading artifact",
                transient=resp.status_code in TRANSIENT_HTTP_STATUSES,
            )
        return resp.content


def build_engine(kind: Optional[str] = None) -> ConversionEngine:
    kind = (kind or config.CONVERTER_ENGINE).lower()
    if kind == "local":
        return LocalProcessEngine()
    if kind == "remote":
        retry = RetryPolicy(
            max_retries=config.REMOTE_MAX_RETRIES,
            base_delay=config.REMOTE_RETRY_BASE_MS / 1000.0,
        )
        return RemoteServiceEngine(
            base_url=config.REMOTE_SERVER_URL or "",
            stager=build_stager(),
            retry=retry,
            jwt_secret=config.REMOTE_JWT_SECRET,
            async_mode=config.REMOTE_ASYNC,
            timeout=config.REMOTE_TIMEOUT_MS / 1000.0,
            poll_interval=config.REMOTE_POLL_INTERVAL_MS / 1000.0,
            issuer=config.REMOTE_JWT_ISSUER,
            audience=config.REMOTE_JWT_AUDIENCE,
        )
    raise ConfigError(f"unknown CONVERTER_ENGINE value: {kind}")
