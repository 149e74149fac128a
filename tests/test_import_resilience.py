import subprocess
import sys
import os
import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))

# Helper to run python from project root with a clean config
def run_python(args, tmp_path):
    cmd = [sys.executable] + args

    env = os.environ.copy()
    if 'PYTHONPATH' not in env:
        env['PYTHONPATH'] = PROJECT_ROOT
    else:
        env['PYTHONPATH'] = PROJECT_ROOT + os.pathsep + env['PYTHONPATH']
    env['HONEYSSH_CONFIG'] = str(tmp_path / "absent.yaml")
    env['HONEYSSH_HOST_KEY'] = str(tmp_path / "no_such_key")

    return subprocess.run(cmd, cwd=str(tmp_path), capture_output=True, text=True, env=env, timeout=60)

@pytest.mark.parametrize("module", [
    "honeyssh.server", "honeyssh.session", "honeyssh.fake_shell", "honeyssh.auth", "honeyssh.recorder",
])
def test_import_module(module, tmp_path):
    """Each module imports on its own without side effects that crash."""
    res = run_python(["-c", f"import {module}"], tmp_path)
    assert res.returncode == 0, f"Import {module} failed: {res.stderr}"

def test_cli_without_address_prints_usage(tmp_path):
    res = run_python(["-m", "honeyssh.server"], tmp_path)
    assert res.returncode != 0
    assert "usage: honeyssh" in res.stderr

def test_cli_without_host_key_aborts(tmp_path):
    res = run_python(["-m", "honeyssh.server", "127.0.0.1:0"], tmp_path)
    assert res.returncode == 1
    assert "Unable to load server key" in res.stdout
    # Nothing was set up for connections
    assert not (tmp_path / "dump").exists()
