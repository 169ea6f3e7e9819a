"""
LiveRedefiner - replace code units inside a running process.

The target process runs an agent reachable over a debugger-style wire
protocol. A redefinition is all-or-nothing:

    1. every unit must carry its payload
    2. the agent image must match the breadcrumb left by the first attach
    3. every unit name must resolve to at least one loaded definition
    4. a single batch is submitted

Nothing is sent to the target until 1-3 hold, so a RedefineError always
leaves the process as it was.
"""

import base64
import itertools
import json
import logging
import socket
import time
import zlib
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence

from swapdeploy.core.protocols import FileSystemService
from swapdeploy.exceptions import RedefineError
from swapdeploy.units.models import CodeUnit

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
DEFAULT_ATTACH_TIMEOUT_S = 10.0


class DebugSession(Protocol):
    """An attached connection to the agent of one process."""

    def check_breadcrumb(self, checksum: int) -> bool:
        """
        Compare checksum with the one recorded by the first attach.

        Returns True and records checksum when no breadcrumb exists yet.
        """
        ...

    def resolve(self, unit_name: str) -> list[str]:
        """Return references to the loaded definitions of unit_name (may be empty)."""
        ...

    def redefine(self, definitions: dict[str, bytes]) -> None:
        """
        Apply every definition at once.

        Raises:
            RedefineError: REJECTED if the process refused the batch
        """
        ...

    def close(self) -> None:
        ...


class DebugAttacher(Protocol):
    def attach(self, endpoint: str, timeout: float) -> DebugSession:
        """
        Open a session.

        Raises:
            TimeoutError: If the agent did not answer in time
            OSError: If the endpoint cannot be reached
        """
        ...


@dataclass
class RedefineResult:
    redefined: list[str] = field(default_factory=list)
    duration_ms: float = 0.0


class LiveRedefiner:
    """Applies modified units to a running process through a DebugAttacher."""

    def __init__(
        self,
        attacher: DebugAttacher,
        endpoint: str,
        agent_path: str,
        filesystem: FileSystemService,
        timeout: float = DEFAULT_ATTACH_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            attacher: Opens sessions to the target process
            endpoint: Where the agent listens (e.g. "localhost:8700")
            agent_path: Local copy of the agent image, source of the breadcrumb
            filesystem: Used to read the agent image
            timeout: Seconds allowed for attaching
            clock: Monotonic clock for timings
        """
        self.attacher = attacher
        self.endpoint = endpoint
        self.agent_path = agent_path
        self.filesystem = filesystem
        self.timeout = timeout
        self._clock = clock

    def agent_checksum(self) -> int:
        """CRC-32 of the agent image."""
        try:
            return zlib.crc32(self.filesystem.read_bytes(self.agent_path))
        except OSError as e:
            raise RedefineError(
                RedefineError.AGENT_UNREADABLE,
                f"Cannot read agent image {self.agent_path}: {e}"
            ) from e

    def redefine(self, units: Sequence[CodeUnit]) -> RedefineResult:
        """
        Replace units in the running process.

        Raises:
            RedefineError: MISSING_PAYLOAD, AGENT_UNREADABLE, ATTACH_TIMEOUT,
                ATTACH_FAILED, STALE_BREADCRUMB, UNRESOLVED_UNIT or REJECTED
        """
        started = self._clock()
        if not units:
            return RedefineResult()

        for unit in units:
            if unit.payload is None:
                raise RedefineError(
                    RedefineError.MISSING_PAYLOAD,
                    f"Unit '{unit.name}' has no code to apply",
                    unit.name
                )

        checksum = self.agent_checksum()
        session = self._attach()
        try:
            if not session.check_breadcrumb(checksum):
                raise RedefineError(
                    RedefineError.STALE_BREADCRUMB,
                    f"Process was instrumented by a different agent than {self.agent_path} "
                    f"(crc {checksum:08x}); restart the application"
                )

            definitions = {}
            for unit in units:
                refs = session.resolve(unit.name)
                if not refs:
                    raise RedefineError(
                        RedefineError.UNRESOLVED_UNIT,
                        f"Unit '{unit.name}' is not loaded in the target process",
                        unit.name
                    )
                for ref in refs:
                    definitions[ref] = unit.payload

            logger.debug(f"Submitting {len(definitions)} definition(s) for {len(units)} unit(s)")
            session.redefine(definitions)
        except OSError as e:
            raise RedefineError(
                RedefineError.ATTACH_FAILED,
                f"Connection to {self.endpoint} lost: {e}"
            ) from e
        finally:
            session.close()

        duration_ms = (self._clock() - started) * 1000.0
        logger.info(f"Redefined {len(units)} unit(s) in {duration_ms:.1f} ms")
        return RedefineResult([unit.name for unit in units], duration_ms)

    def _attach(self) -> DebugSession:
        try:
            return self.attacher.attach(self.endpoint, self.timeout)
        except TimeoutError as e:
            raise RedefineError(
                RedefineError.ATTACH_TIMEOUT,
                f"No answer from {self.endpoint} within {self.timeout}s"
            ) from e
        except (OSError, ValueError) as e:
            raise RedefineError(
                RedefineError.ATTACH_FAILED,
                f"Cannot attach to {self.endpoint}: {e}"
            ) from e


def parse_endpoint(endpoint: str) -> tuple[str, int]:
    """Split "host:port" (optionally "tcp://host:port") into its parts."""
    address = endpoint[len('tcp://'):] if endpoint.startswith('tcp://') else endpoint
    host, sep, port = address.rpartition(':')
    if not sep or not port.isdigit():
        raise ValueError(f"Malformed debugger endpoint: {endpoint!r} (expected host:port)")
    return host.strip('[]') or 'localhost', int(port)


class JsonWireSession:
    """
    Session speaking newline-delimited JSON.

    Requests:  {"id": 3, "cmd": "resolve", "name": "app.views.index"}
    Replies:   {"id": 3, "ok": true, "refs": ["app.views.index"]}
               {"id": 3, "ok": false, "error": "..."}
    """

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._reader = sock.makefile('rb')
        self._ids = itertools.count(1)

    def request(self, cmd: str, **fields: Any) -> dict[str, Any]:
        request_id = next(self._ids)
        message = {"id": request_id, "cmd": cmd, **fields}
        self._sock.sendall(json.dumps(message, sort_keys=True).encode('utf-8') + b"\n")

        line = self._reader.readline()
        if not line:
            raise ConnectionError(f"agent closed the connection during '{cmd}'")
        try:
            reply = json.loads(line)
        except json.JSONDecodeError as e:
            raise RedefineError(RedefineError.ATTACH_FAILED, f"Malformed reply to '{cmd}': {e}") from e
        if not isinstance(reply, dict) or reply.get("id") != request_id:
            raise RedefineError(RedefineError.ATTACH_FAILED, f"Unexpected reply to '{cmd}': {reply!r}")
        return reply

    def hello(self) -> None:
        reply = self.request("hello", version=PROTOCOL_VERSION)
        if not reply.get("ok"):
            raise RedefineError(RedefineError.ATTACH_FAILED, f"Agent refused session: {reply.get('error')}")

    def check_breadcrumb(self, checksum: int) -> bool:
        reply = self.request("breadcrumb", checksum=checksum)
        return bool(reply.get("ok")) and bool(reply.get("matches"))

    def resolve(self, unit_name: str) -> list[str]:
        reply = self.request("resolve", name=unit_name)
        if not reply.get("ok"):
            return []
        return [str(ref) for ref in reply.get("refs", [])]

    def redefine(self, definitions: dict[str, bytes]) -> None:
        encoded = {ref: base64.b64encode(code).decode('ascii') for ref, code in definitions.items()}
        reply = self.request("redefine", definitions=encoded)
        if not reply.get("ok"):
            raise RedefineError(
                RedefineError.REJECTED,
                f"Target rejected the redefinition: {reply.get('error', 'no reason given')}"
            )

    def close(self) -> None:
        try:
            self.request("detach")
        except (OSError, RedefineError) as e:
            logger.debug(f"Detach not acknowledged: {e}")
        finally:
            self._reader.close()
            self._sock.close()


class JsonWireAttacher:
    """Connects to an agent listening on TCP."""

    def attach(self, endpoint: str, timeout: float) -> JsonWireSession:
        host, port = parse_endpoint(endpoint)
        sock = socket.create_connection((host, port), timeout=timeout)
        session = JsonWireSession(sock)
        try:
            session.hello()
        except BaseException:
            session.close()
            raise
        return session
