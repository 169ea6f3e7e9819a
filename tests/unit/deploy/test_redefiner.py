"""Unit tests for LiveRedefiner and the JSON wire session."""

import base64
import json
import socket
import threading
import zlib
from unittest.mock import Mock

import pytest

from swapdeploy.core.implementations import RealFileSystemService
from swapdeploy.core.protocols import FileSystemService
from swapdeploy.deploy import DebugAttacher, DebugSession, JsonWireAttacher, LiveRedefiner
from swapdeploy.deploy.redefiner import parse_endpoint
from swapdeploy.exceptions import RedefineError
from swapdeploy.units import CodeUnit

AGENT_IMAGE = b"agent-v1"


def unit(name, code=b"def f():\n    return 2\n"):
    return CodeUnit(name, "app/views.py", zlib.crc32(code), code)


class TestLiveRedefiner:
    """Test the all-or-nothing redefinition sequence."""

    def setup_method(self):
        self.session = Mock(spec=DebugSession)
        self.session.check_breadcrumb.return_value = True
        self.session.resolve.side_effect = lambda name: [name]
        self.attacher = Mock(spec=DebugAttacher)
        self.attacher.attach.return_value = self.session
        self.fs = Mock(spec=FileSystemService)
        self.fs.read_bytes.return_value = AGENT_IMAGE
        ticks = iter([1.0, 1.25])
        self.redefiner = LiveRedefiner(
            self.attacher, "localhost:8700", "/opt/agent.so", self.fs, timeout=3, clock=lambda: next(ticks)
        )

    def test_redefines_all_units_in_one_batch(self):
        result = self.redefiner.redefine([unit("app.views.f"), unit("app.views.g", b"g")])

        self.attacher.attach.assert_called_once_with("localhost:8700", 3)
        self.session.check_breadcrumb.assert_called_once_with(zlib.crc32(AGENT_IMAGE))
        self.session.redefine.assert_called_once_with({
            "app.views.f": b"def f():\n    return 2\n",
            "app.views.g": b"g",
        })
        self.session.close.assert_called_once()
        assert result.redefined == ["app.views.f", "app.views.g"]
        assert result.duration_ms == pytest.approx(250.0)

    def test_every_resolved_reference_gets_the_code(self):
        self.session.resolve.side_effect = lambda name: [f"{name}#1", f"{name}#2"]

        self.redefiner.redefine([unit("app.views.f")])

        definitions = self.session.redefine.call_args[0][0]
        assert set(definitions) == {"app.views.f#1", "app.views.f#2"}

    def test_no_units_never_attaches(self):
        result = self.redefiner.redefine([])

        assert result.redefined == []
        self.attacher.attach.assert_not_called()

    def test_missing_payload(self):
        with pytest.raises(RedefineError) as exc_info:
            self.redefiner.redefine([unit("app.views.f").without_payload()])

        assert exc_info.value.kind == RedefineError.MISSING_PAYLOAD
        assert exc_info.value.unit == "app.views.f"
        self.attacher.attach.assert_not_called()

    def test_unreadable_agent(self):
        self.fs.read_bytes.side_effect = FileNotFoundError("/opt/agent.so")

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner.redefine([unit("app.views.f")])

        assert exc_info.value.kind == RedefineError.AGENT_UNREADABLE

    def test_attach_timeout(self):
        self.attacher.attach.side_effect = socket.timeout("timed out")

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner.redefine([unit("app.views.f")])

        assert exc_info.value.kind == RedefineError.ATTACH_TIMEOUT

    def test_attach_refused(self):
        self.attacher.attach.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner.redefine([unit("app.views.f")])

        assert exc_info.value.kind == RedefineError.ATTACH_FAILED

    def test_stale_breadcrumb_submits_nothing(self):
        self.session.check_breadcrumb.return_value = False

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner.redefine([unit("app.views.f")])

        assert exc_info.value.kind == RedefineError.STALE_BREADCRUMB
        self.session.redefine.assert_not_called()
        self.session.close.assert_called_once()

    def test_unresolved_unit_submits_nothing(self):
        self.session.resolve.side_effect = lambda name: [] if name == "app.views.g" else [name]

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner.redefine([unit("app.views.f"), unit("app.views.g")])

        assert exc_info.value.kind == RedefineError.UNRESOLVED_UNIT
        assert exc_info.value.unit == "app.views.g"
        self.session.redefine.assert_not_called()
        self.session.close.assert_called_once()

    def test_rejected_batch_propagates(self):
        self.session.redefine.side_effect = RedefineError(RedefineError.REJECTED, "verifier failed")

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner.redefine([unit("app.views.f")])

        assert exc_info.value.kind == RedefineError.REJECTED
        self.session.close.assert_called_once()

    def test_connection_lost(self):
        self.session.resolve.side_effect = ConnectionResetError("reset")

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner.redefine([unit("app.views.f")])

        assert exc_info.value.kind == RedefineError.ATTACH_FAILED
        assert "lost" in exc_info.value.message


class TestParseEndpoint:
    @pytest.mark.parametrize("endpoint,expected", [
        ("localhost:8700", ("localhost", 8700)),
        ("tcp://10.0.0.2:9000", ("10.0.0.2", 9000)),
        (":8700", ("localhost", 8700)),
        ("[::1]:8700", ("::1", 8700)),
    ])
    def test_valid(self, endpoint, expected):
        assert parse_endpoint(endpoint) == expected

    @pytest.mark.parametrize("endpoint", ["localhost", "localhost:http", ""])
    def test_malformed(self, endpoint):
        with pytest.raises(ValueError, match="Malformed debugger endpoint"):
            parse_endpoint(endpoint)


class FakeAgent:
    """Single-connection agent speaking the JSON line protocol."""

    def __init__(self, loaded, reject=False):
        self.loaded = set(loaded)
        self.reject = reject
        self.breadcrumb = None
        self.applied = {}
        self.commands = []
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.bind(("127.0.0.1", 0))
        self._server.listen(1)
        self.endpoint = f"127.0.0.1:{self._server.getsockname()[1]}"
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        conn, _ = self._server.accept()
        with conn, conn.makefile('rb') as reader:
            for line in reader:
                request = json.loads(line)
                self.commands.append(request["cmd"])
                reply = {"id": request["id"], **self._handle(request)}
                conn.sendall(json.dumps(reply).encode() + b"\n")
                if request["cmd"] == "detach":
                    break

    def _handle(self, request):
        cmd = request["cmd"]
        if cmd == "breadcrumb":
            if self.breadcrumb is None:
                self.breadcrumb = request["checksum"]
            return {"ok": True, "matches": self.breadcrumb == request["checksum"]}
        if cmd == "resolve":
            if request["name"] not in self.loaded:
                return {"ok": False, "error": "not loaded"}
            return {"ok": True, "refs": [request["name"]]}
        if cmd == "redefine":
            if self.reject:
                return {"ok": False, "error": "verifier failed"}
            self.applied = {ref: base64.b64decode(code) for ref, code in request["definitions"].items()}
        return {"ok": True}

    def stop(self):
        self._thread.join(5)
        self._server.close()


class TestJsonWireAttacher:
    """Test the wire session against an in-process agent."""

    def redefiner(self, agent, tmp_path, image=AGENT_IMAGE):
        agent_path = tmp_path / "agent.so"
        agent_path.write_bytes(image)
        return LiveRedefiner(JsonWireAttacher(), agent.endpoint, str(agent_path), RealFileSystemService(), timeout=5)

    def test_full_session(self, tmp_path):
        agent = FakeAgent(loaded={"app.views.f"})

        result = self.redefiner(agent, tmp_path).redefine([unit("app.views.f")])
        agent.stop()

        assert result.redefined == ["app.views.f"]
        assert agent.applied == {"app.views.f": b"def f():\n    return 2\n"}
        assert agent.commands == ["hello", "breadcrumb", "resolve", "redefine", "detach"]
        assert agent.breadcrumb == zlib.crc32(AGENT_IMAGE)

    def test_unresolved_unit_detaches_without_redefining(self, tmp_path):
        agent = FakeAgent(loaded=set())

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner(agent, tmp_path).redefine([unit("app.views.f")])
        agent.stop()

        assert exc_info.value.kind == RedefineError.UNRESOLVED_UNIT
        assert "redefine" not in agent.commands
        assert agent.commands[-1] == "detach"

    def test_rejection(self, tmp_path):
        agent = FakeAgent(loaded={"app.views.f"}, reject=True)

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner(agent, tmp_path).redefine([unit("app.views.f")])
        agent.stop()

        assert exc_info.value.kind == RedefineError.REJECTED
        assert "verifier failed" in exc_info.value.message

    def test_stale_breadcrumb(self, tmp_path):
        agent = FakeAgent(loaded={"app.views.f"})
        agent.breadcrumb = zlib.crc32(b"agent-v0")

        with pytest.raises(RedefineError) as exc_info:
            self.redefiner(agent, tmp_path).redefine([unit("app.views.f")])
        agent.stop()

        assert exc_info.value.kind == RedefineError.STALE_BREADCRUMB
        assert agent.applied == {}

    def test_nothing_listening(self, tmp_path):
        probe = socket.socket()
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
        probe.close()
        agent_path = tmp_path / "agent.so"
        agent_path.write_bytes(AGENT_IMAGE)
        fs = Mock(spec=FileSystemService)
        fs.read_bytes.return_value = AGENT_IMAGE
        redefiner = LiveRedefiner(JsonWireAttacher(), f"127.0.0.1:{port}", str(agent_path), fs, timeout=2)

        with pytest.raises(RedefineError) as exc_info:
            redefiner.redefine([unit("app.views.f")])

        assert exc_info.value.kind == RedefineError.ATTACH_FAILED
