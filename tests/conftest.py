"""Shared pytest fixtures for integration tests."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port
from tests.utils.process import (
    PROJECT_ROOT,
    build_site,
    server_command,
    server_environment,
)

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    files_root: Path
    config_dir: Path
    process: subprocess.Popen[str]
    log_file: Path


def _launch_server(
    host: str, port: int, workspace: Path
) -> Generator[ServerProcessInfo, None, None]:
    files_root = build_site(workspace / "web")
    config_dir = workspace / "conf"
    config_dir.mkdir()
    log_file = workspace / "server.log"
    env = server_environment(DEVPORT=str(port), FILESROOT=str(files_root), LOGLEVEL="debug")

    with subprocess.Popen(
        server_command(host, config_dir, log_file),
        cwd=PROJECT_ROOT,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=15)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "files_root": files_root,
            "config_dir": config_dir,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=15)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""
    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the site host in a background process for integration tests."""
    host = "127.0.0.1"
    port = reserve_port(host)
    workspace = tmp_path_factory.mktemp("site-host")
    yield from _launch_server(host, port, workspace)


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""
    return server_process["base_url"]
