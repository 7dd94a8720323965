"""
Tunnel Providers

- NgrokProvider: managed tunnel through the ngrok SDK, optional static domain
- ZrokProvider: `zrok share reserved` subprocess, URL parsed from stdout
- ManualProvider: operator-supplied public URL (host already reachable)

Providers only connect, disconnect and probe. Status, retries and health
scheduling are handled by TunnelSupervisor.
"""
import asyncio
import inspect
import logging
import os
import re
from typing import Any, Optional

import httpx
import ngrok

from ..exceptions import TunnelConnectError
from ..models.tunnel import TunnelConfig, TunnelProviderName

logger = logging.getLogger(__name__)

ZROK_API_ENDPOINT = "https://api.zrok.io"
ZROK_URL_PATTERN = re.compile(r"https?://[^\s\"'<>|│]+")
PROCESS_STOP_TIMEOUT_SECONDS = 5.0


async def _maybe_await(value: Any) -> Any:
    """The ngrok SDK returns awaitables inside a running loop and values outside."""
    if inspect.isawaitable(value):
        return await value
    return value


# ============================================================================
# ngrok
# ============================================================================

class NgrokProvider:
    """
    ngrok tunnel with SDK-level reconnection.

    Requires NGROK_AUTHTOKEN; NGROK_DOMAIN pins a persistent static domain.
    """

    name = TunnelProviderName.NGROK

    def __init__(self, config: TunnelConfig):
        self._config = config
        self._listener: Any = None

    async def connect(self) -> str:
        if not self._config.ngrok_authtoken:
            raise TunnelConnectError("ngrok provider requires NGROK_AUTHTOKEN to be configured")

        logger.info(
            f"Starting ngrok tunnel to port {self._config.local_port} "
            f"(domain={self._config.ngrok_domain or 'auto'})"
        )

        options = {"authtoken": self._config.ngrok_authtoken}
        if self._config.ngrok_domain:
            options["domain"] = self._config.ngrok_domain

        try:
            self._listener = await asyncio.wait_for(
                _maybe_await(ngrok.forward(self._config.local_port, **options)),
                timeout=self._config.connect_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise TunnelConnectError("ngrok connection timeout")
        except Exception as e:
            raise TunnelConnectError(f"ngrok connection failed: {e}")

        public_url = self._listener.url() if self._listener is not None else None
        if not public_url:
            await self.disconnect()
            raise TunnelConnectError("ngrok public URL not available")
        return public_url

    async def disconnect(self) -> None:
        listener, self._listener = self._listener, None
        if listener is None:
            return
        try:
            await _maybe_await(listener.close())
            logger.info("ngrok tunnel disconnected")
        except Exception as e:
            logger.error(f"ngrok disconnect error: {e}")

    async def check_health(self) -> bool:
        # The SDK reconnects its session internally; a live listener is healthy
        return self._listener is not None


# ============================================================================
# zrok
# ============================================================================

class ZrokProvider:
    """
    zrok reserved share driven through the CLI.

    Requires ZROK_UNIQUE_NAME (the reserved share) and an enabled zrok
    environment; ZROK_TOKEN is passed through for `zrok enable` setups.
    The public URL is the first http(s) URL the process prints on stdout.
    """

    name = TunnelProviderName.ZROK

    def __init__(self, config: TunnelConfig, executable: str = "zrok"):
        self._config = config
        self._executable = executable
        self._process: Optional[asyncio.subprocess.Process] = None
        self._public_url: Optional[str] = None
        self._drain_tasks: list = []

    def _build_command(self) -> list:
        return [self._executable, "share", "reserved", self._config.zrok_unique_name, "--headless"]

    async def connect(self) -> str:
        if not self._config.zrok_unique_name:
            raise TunnelConnectError("zrok provider requires ZROK_UNIQUE_NAME to be configured")

        logger.info(
            f"Starting zrok tunnel to port {self._config.local_port} "
            f"(share={self._config.zrok_unique_name})"
        )

        env = dict(os.environ)
        env.setdefault("ZROK_API_ENDPOINT", ZROK_API_ENDPOINT)
        if self._config.zrok_token:
            env["ZROK_TOKEN"] = self._config.zrok_token

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._build_command(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise TunnelConnectError(f"Failed to launch zrok: {e}")

        try:
            public_url = await asyncio.wait_for(
                self._read_public_url(),
                timeout=self._config.connect_timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self.disconnect()
            raise TunnelConnectError("zrok connection timeout")
        except TunnelConnectError:
            await self.disconnect()
            raise

        self._public_url = public_url
        self._drain_tasks = [
            asyncio.create_task(self._drain(self._process.stdout, logging.DEBUG)),
            asyncio.create_task(self._drain(self._process.stderr, logging.WARNING)),
        ]
        return public_url

    async def _read_public_url(self) -> str:
        """Read stdout line by line until a URL appears or the process exits."""
        stdout = self._process.stdout if self._process is not None else None
        if stdout is None:
            raise TunnelConnectError("zrok process has no stdout")
        while True:
            line = await stdout.readline()
            if not line:
                code = await self._process.wait()
                raise TunnelConnectError(f"zrok exited with code {code} before publishing a URL")
            text = line.decode("utf-8", errors="replace")
            match = ZROK_URL_PATTERN.search(text)
            if match:
                return match.group(0).rstrip("/.,")

    @staticmethod
    async def _drain(stream: Optional[asyncio.StreamReader], level: int) -> None:
        """Keep reading a pipe so the child never blocks on a full buffer."""
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                return
            logger.log(level, f"zrok: {line.decode('utf-8', errors='replace').rstrip()}")

    async def disconnect(self) -> None:
        for task in self._drain_tasks:
            task.cancel()
        self._drain_tasks = []
        self._public_url = None

        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return

        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=PROCESS_STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("zrok did not exit after SIGTERM, killing it")
            process.kill()
            await process.wait()
        except ProcessLookupError:
            pass
        logger.info("zrok tunnel disconnected")

    async def check_health(self) -> bool:
        if self._process is None or self._process.returncode is not None:
            return False
        if not self._public_url:
            return False

        try:
            async with httpx.AsyncClient(timeout=self._config.health_probe_timeout_seconds) as client:
                response = await client.get(f"{self._public_url}/health")
            return response.is_success
        except httpx.HTTPError as e:
            logger.debug(f"zrok health probe failed: {e}")
            return False


# ============================================================================
# Manual
# ============================================================================

class ManualProvider:
    """
    Static public URL for hosts that are already reachable (VPS, n8n, Opal).

    Requires WEBHOOK_PUBLIC_URL. Always healthy.
    """

    name = TunnelProviderName.MANUAL

    def __init__(self, config: TunnelConfig):
        self._config = config

    async def connect(self) -> str:
        if not self._config.public_url:
            raise TunnelConnectError(
                "Manual provider requires WEBHOOK_PUBLIC_URL to be configured"
            )
        logger.info(f"Manual tunnel configured: {self._config.public_url}")
        return self._config.public_url

    async def disconnect(self) -> None:
        logger.info("Manual tunnel disconnected")

    async def check_health(self) -> bool:
        return True
