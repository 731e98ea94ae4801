import subprocess
from typing import Any, Dict
from .registry import HandlerRegistry

class CommandFailed(Exception):
    def __init__(self, command: str, exit_code: int, stderr: str):
        super().__init__(f"Command exited with {exit_code}: {stderr.strip() or command}")
        self.exit_code = exit_code
        self.stderr = stderr

def execute_command(command: str, timeout: int = None) -> tuple[int, str, str]:
    """Execute a shell command and return exit code, stdout, and stderr"""
    process = subprocess.Popen(
        command,
        shell=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True
    )

    try:
        stdout, stderr = process.communicate(timeout=timeout)
        return process.returncode, stdout, stderr
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()
        return -1, "", "Job timed out"

def run_shell(data: Dict[str, Any]) -> Dict[str, Any]:
    """Run ``data["command"]``; a non-zero exit is a handler failure."""
    command = data.get("command")
    if not command:
        raise ValueError("shell job requires a 'command'")

    exit_code, stdout, stderr = execute_command(command, data.get("timeout"))
    if exit_code != 0:
        raise CommandFailed(command, exit_code, stderr)
    return {"exit_code": exit_code, "output": stdout.strip()}

def builtin_registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register("shell", run_shell)
    return registry
