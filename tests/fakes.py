"""Hand-written stand-ins for the docker CLI and the requests module."""

import json
import subprocess
from collections import namedtuple

import requests

DiskUsage = namedtuple("DiskUsage", ["total", "used", "free"])


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None

    def critical(self, *_args, **_kwargs):
        return None

    def exception(self, *_args, **_kwargs):
        return None


class _NullStatus:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None

    def status(self, *_args, **_kwargs):
        return _NullStatus()


def tags_payload(*names):
    return {
        "count": len(names),
        "next": None,
        "previous": None,
        "results": [
            {
                "name": name,
                "full_size": 1024,
                "last_updated": f"2024-01-{index + 1:02d}T00:00:00Z",
                "digest": f"sha256:{index:064d}",
            }
            for index, name in enumerate(names)
        ],
    }


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload
        self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self.payload is None:
            raise ValueError("no JSON body")
        return self.payload


class FakeRequestsModule:
    """Returns queued responses in order; the last one repeats."""

    RequestException = requests.RequestException
    Timeout = requests.Timeout
    ConnectionError = requests.ConnectionError
    ChunkedEncodingError = requests.exceptions.ChunkedEncodingError

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def registry_with_tags(*names):
    return FakeRequestsModule(FakeResponse(200, tags_payload(*names)))


class FakeProcess:
    def __init__(self, pid):
        self.pid = pid
        self.returncode = None
        self.terminated = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15


class FakeDocker:
    """In-memory docker CLI used in place of the ``subprocess`` module."""

    MUTATING_VERBS = {"pull", "start", "stop", "rm", "rename", "run"}

    def __init__(self):
        self.containers = {}
        self.images = set()
        self.calls = []
        self.failures = {}
        self.health = {}
        self.spawned = []

    def add_container(
        self,
        name,
        image,
        env=(),
        ports=None,
        mounts=(),
        restart_policy="unless-stopped",
    ):
        self.containers[name] = {
            "Id": f"{len(self.containers) + 1:064d}",
            "Name": f"/{name}",
            "Config": {"Image": image, "Env": list(env)},
            "HostConfig": {
                "PortBindings": {
                    container_port: [{"HostIp": "", "HostPort": host_port}]
                    for container_port, host_port in (ports or {}).items()
                },
                "RestartPolicy": {"Name": restart_policy},
            },
            "Mounts": [dict(mount) for mount in mounts],
            "State": {"Running": True, "Status": "running"},
        }
        self.images.add(image)

    def fail(self, verb, stderr, times=1):
        self.failures.setdefault(verb, []).extend([stderr] * times)

    def verbs(self):
        return [cmd[1] for cmd in self.calls]

    def mutating_calls(self):
        return [cmd for cmd in self.calls if cmd[1] in self.MUTATING_VERBS]

    def Popen(self, cmd, **kwargs):
        process = FakeProcess(pid=4000 + len(self.spawned))
        self.spawned.append({"cmd": list(cmd), "kwargs": kwargs, "process": process})
        return process

    def run(self, cmd, text=True, capture_output=False, timeout=None):
        self.calls.append(list(cmd))
        verb, args = cmd[1], list(cmd[2:])

        pending = self.failures.get(verb)
        if pending:
            return self._error(cmd, pending.pop(0))

        handler = getattr(self, f"_{verb}")
        return handler(cmd, args)

    @staticmethod
    def _ok(cmd, stdout=""):
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    @staticmethod
    def _error(cmd, stderr, returncode=1):
        return subprocess.CompletedProcess(cmd, returncode, stdout="", stderr=stderr)

    def _missing(self, cmd, name):
        return self._error(cmd, f"Error response from daemon: No such container: {name}")

    def _version(self, cmd, args):
        return self._ok(cmd, "24.0.7\n")

    def _inspect(self, cmd, args):
        name = args[0]
        if name not in self.containers:
            return self._error(cmd, f"Error: No such object: {name}")
        return self._ok(cmd, json.dumps([self.containers[name]]))

    def _pull(self, cmd, args):
        self.images.add(args[0])
        return self._ok(cmd, f"Status: Downloaded newer image for {args[0]}\n")

    def _start(self, cmd, args):
        name = args[0]
        if name not in self.containers:
            return self._missing(cmd, name)
        self.containers[name]["State"] = {"Running": True, "Status": "running"}
        return self._ok(cmd, f"{name}\n")

    def _stop(self, cmd, args):
        name = args[0]
        if name not in self.containers:
            return self._missing(cmd, name)
        self.containers[name]["State"] = {"Running": False, "Status": "exited"}
        return self._ok(cmd, f"{name}\n")

    def _rm(self, cmd, args):
        name = args[-1]
        if name not in self.containers:
            return self._missing(cmd, name)
        if self.containers[name]["State"].get("Running") and "-f" not in args:
            return self._error(cmd, f"Error response from daemon: cannot remove running container {name}")
        del self.containers[name]
        return self._ok(cmd, f"{name}\n")

    def _rename(self, cmd, args):
        old_name, new_name = args
        if old_name not in self.containers:
            return self._missing(cmd, old_name)
        if new_name in self.containers:
            return self._error(cmd, f"Error response from daemon: name {new_name} is already in use")
        attrs = self.containers.pop(old_name)
        attrs["Name"] = f"/{new_name}"
        self.containers[new_name] = attrs
        return self._ok(cmd)

    def _run(self, cmd, args):
        name, image, restart = None, None, "no"
        env, ports, mounts = [], {}, []
        index = 0
        while index < len(args):
            flag = args[index]
            if flag == "-d":
                index += 1
                continue
            if flag in ("--name", "-p", "-v", "-e", "--restart"):
                value = args[index + 1]
                if flag == "--name":
                    name = value
                elif flag == "-p":
                    host_port, container_port = value.split(":", 1)
                    ports[container_port] = host_port
                elif flag == "-v":
                    source, destination = value.split(":", 1)
                    mounts.append({"Type": "bind", "Source": source, "Destination": destination})
                elif flag == "-e":
                    env.append(value)
                else:
                    restart = value
                index += 2
                continue
            image = flag
            index += 1

        if name in self.containers:
            return self._error(
                cmd,
                f'docker: Error response from daemon: Conflict. The container name "/{name}" is already in use.',
                returncode=125,
            )

        self.add_container(name, image, env=env, ports=ports, mounts=mounts, restart_policy=restart)
        health = self.health.get(image)
        if health:
            self.containers[name]["State"]["Health"] = {"Status": health}
        return self._ok(cmd, f"{self.containers[name]['Id']}\n")
