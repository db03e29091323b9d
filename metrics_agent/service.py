"""
systemd integration: install the agent as a service and control it.
"""

import os
import platform
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

from metrics_agent.errors import ServiceControlError


SERVICE_NAME = 'metrics-agent'
UNIT_DIR = Path('/etc/systemd/system')

SERVICE_ACTIONS = ['install', 'uninstall', 'start', 'stop', 'restart', 'status']

UNIT_TEMPLATE = """[Unit]
Description=Host metrics agent
Requires=network.target
After=network-online.target syslog.target

[Service]
Type=simple
ExecStart={exec_start}
Restart=on-success
SuccessExitStatus=1 2 8 SIGKILL

[Install]
WantedBy=multi-user.target
"""


class ServiceManager:
    """Runs service verbs against systemd"""

    def __init__(
        self,
        config_path: Optional[str] = None,
        name: str = SERVICE_NAME,
        unit_dir: Path = UNIT_DIR,
        python: str = sys.executable,
        system: Optional[str] = None
    ):
        self.config_path = os.path.abspath(config_path) if config_path else None
        self.name = name
        self.unit_dir = Path(unit_dir)
        self.python = python
        self.system = system or platform.system()

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / f"{self.name}.service"

    def render_unit(self) -> str:
        command = [self.python, '-m', 'metrics_agent']
        if self.config_path:
            command += ['--config', self.config_path]
        return UNIT_TEMPLATE.format(exec_start=' '.join(shlex.quote(part) for part in command))

    def control(self, action: str) -> str:
        """
        Perform a service action

        Returns:
            str: Human readable result

        Raises:
            ServiceControlError: If the action is unknown or fails
        """
        if action not in SERVICE_ACTIONS:
            raise ServiceControlError(f"Unknown action: {action}. Valid actions: {SERVICE_ACTIONS}")

        if self.system != 'Linux' or shutil.which('systemctl') is None:
            raise ServiceControlError(f"systemd is not available on this host ({self.system})")

        return getattr(self, f'_{action}')()

    def _systemctl(self, *args: str, check: bool = True) -> str:
        try:
            result = subprocess.run(
                ['systemctl', *args],
                capture_output=True,
                text=True,
                check=check
            )
        except subprocess.CalledProcessError as e:
            raise ServiceControlError(
                f"systemctl {' '.join(args)} failed: {(e.stderr or '').strip()}"
            ) from e
        except OSError as e:
            raise ServiceControlError(f"Could not run systemctl: {e}") from e
        return result.stdout.strip()

    def _install(self) -> str:
        if self.unit_path.exists():
            raise ServiceControlError(f"Service already installed: {self.unit_path}")

        try:
            self.unit_path.write_text(self.render_unit())
        except OSError as e:
            raise ServiceControlError(f"Cannot write {self.unit_path} (need sudo?): {e}") from e

        self._systemctl('daemon-reload')
        self._systemctl('enable', self.name)
        return f"Installed {self.unit_path}"

    def _uninstall(self) -> str:
        if not self.unit_path.exists():
            raise ServiceControlError(f"Service not installed: {self.unit_path}")

        self._systemctl('stop', self.name, check=False)
        self._systemctl('disable', self.name, check=False)

        try:
            self.unit_path.unlink()
        except OSError as e:
            raise ServiceControlError(f"Cannot remove {self.unit_path} (need sudo?): {e}") from e

        self._systemctl('daemon-reload')
        return f"Removed {self.unit_path}"

    def _start(self) -> str:
        self._systemctl('start', self.name)
        return f"Started {self.name}"

    def _stop(self) -> str:
        self._systemctl('stop', self.name)
        return f"Stopped {self.name}"

    def _restart(self) -> str:
        self._systemctl('restart', self.name)
        return f"Restarted {self.name}"

    def _status(self) -> str:
        # is-active exits non-zero for inactive units
        state = self._systemctl('is-active', self.name, check=False)
        return f"{self.name}: {state or 'unknown'}"
