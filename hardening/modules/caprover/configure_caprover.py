"""
CapRover Module

Deploys and resets a single-node CapRover installation. The platform runs
as the ``captain`` container on Docker Swarm; its state lives in the data
directory (``/captain``). A reset backs that directory up, removes every
captain/caprover container, swarm service, volume and network, leaves the
swarm and recreates an empty data directory owned by CapRover's UID.

Without sub-flags the module only reports the current state.

Sub-flags:
    --install-cli        Install Docker, Node.js and the caprover CLI
    --reset              Wipe the CapRover environment (requires --force)
    --force              Confirm the destructive reset
    --deploy             Open the platform ports and start the captain container
    --ip=ADDRESS         Main node address (default: first of 'hostname -I')
    --data-dir=PATH      CapRover data directory (default /captain)
    --docker-socket=PATH Docker socket mounted into captain (default /var/run/docker.sock)
    --min-disk-gb=N      Free space required before a reset or deploy (default 2)
    --dry-run            Log the changes without applying them

License: MIT
"""

import os
import shutil
from pathlib import Path
from typing import List, Optional

from hardening.dependency_checker import DependencyChecker
from hardening.exceptions import ModuleExecutionError
from hardening.module_support import ModuleArgumentParser, parse_module_args
from hardening.validators import validate_ip

CAPTAIN_NAME = "captain"
CAPTAIN_IMAGE = "caprover/caprover"
DATA_DIR = Path("/captain")
DOCKER_SOCKET = Path("/var/run/docker.sock")
SWARM_STATE_DIR = "/var/lib/docker/swarm"
CAPTAIN_UID = "1000"

# Dashboard, HTTP(S), certificate renewal and swarm traffic
TCP_PORTS = ["80", "443", "3000", "996", "7946", "4789", "2377"]
UDP_PORTS = ["7946", "4789", "2377"]

RESOURCE_MARKERS = (CAPTAIN_NAME, "caprover")


def create_parser() -> ModuleArgumentParser:
    parser = ModuleArgumentParser("caprover")
    parser.add_argument('--install-cli', action='store_true')
    parser.add_argument('--reset', action='store_true')
    parser.add_argument('--force', action='store_true')
    parser.add_argument('--deploy', action='store_true')
    parser.add_argument('--ip')
    parser.add_argument('--data-dir', default=str(DATA_DIR))
    parser.add_argument('--docker-socket', default=str(DOCKER_SOCKET))
    parser.add_argument('--min-disk-gb', type=int, default=2)
    return parser


def is_captain_resource(name: str) -> bool:
    """True for names CapRover creates (captain-*, *caprover*)."""
    lowered = name.lower()
    return any(marker in lowered for marker in RESOURCE_MARKERS)


class CapRoverManager:
    """Docker-side operations for the captain container and its swarm."""

    def __init__(self, context, data_dir: Path, docker_socket: Path):
        """Initialize the CapRover manager."""
        self.context = context
        self.runner = context.runner
        self.logger = context.logger
        self.data_dir = data_dir
        self.docker_socket = docker_socket

    def _list(self, command: List[str]) -> List[str]:
        """Names printed one per line by a docker listing command."""
        result = self.runner.run(command, mutating=False)
        if not result.success:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def captain_containers(self) -> List[str]:
        """Captain/CapRover containers, running or not."""
        names = self._list(["docker", "ps", "-a", "--format", "{{.Names}}"])
        return [name for name in names if is_captain_resource(name)]

    def captain_services(self) -> List[str]:
        """Captain/CapRover swarm services."""
        names = self._list(["docker", "service", "ls", "--format", "{{.Name}}"])
        return [name for name in names if is_captain_resource(name)]

    def captain_volumes(self) -> List[str]:
        """Captain/CapRover docker volumes."""
        names = self._list(["docker", "volume", "ls", "--format", "{{.Name}}"])
        return [name for name in names if is_captain_resource(name)]

    def captain_networks(self) -> List[str]:
        """Captain/CapRover docker networks."""
        names = self._list(["docker", "network", "ls", "--format", "{{.Name}}"])
        return [name for name in names if is_captain_resource(name)]

    def is_docker_active(self) -> bool:
        """Check if the docker service is running."""
        return self.runner.run(["systemctl", "is-active", "--quiet", "docker"],
                               mutating=False).success

    def ensure_docker(self) -> None:
        """Start docker when it is stopped; fail when it will not come up."""
        if not self.runner.exists("docker"):
            raise ModuleExecutionError("Docker is not installed; re-run with --install-cli",
                                       module="caprover")
        if self.is_docker_active():
            self.logger.info("✓ Docker is running")
            return
        self.logger.warning("Docker is not running, starting it...")
        self.runner.run(["systemctl", "start", "docker"], check=True)
        if not self.context.dry_run and not self.is_docker_active():
            raise ModuleExecutionError("Docker did not start; check 'journalctl -u docker'",
                                       module="caprover")

    def check_socket(self) -> None:
        """Fail when the docker socket is not readable."""
        if not os.access(self.docker_socket, os.R_OK):
            raise ModuleExecutionError(f"Cannot read {self.docker_socket}; run as root",
                                       module="caprover")

    def check_disk_space(self, min_gb: int) -> None:
        """Refuse to continue with less than ``min_gb`` free on the data filesystem."""
        checked = self.data_dir if self.data_dir.exists() else self.data_dir.parent
        free_gb = shutil.disk_usage(checked).free // (1024 ** 3)
        if free_gb < min_gb:
            raise ModuleExecutionError(f"Only {free_gb}GB free on {checked}, "
                                       f"{min_gb}GB required", module="caprover")
        self.logger.info(f"✓ {free_gb}GB free on {checked}")

    def busy_ports(self) -> List[str]:
        """Platform ports held by something other than docker or CapRover."""
        result = self.runner.run(["ss", "-ltnp"], mutating=False)
        busy = []
        for line in result.stdout.splitlines():
            if any(owner in line for owner in ("docker-proxy", "dockerd", "caprover")):
                continue
            fields = line.split()
            if len(fields) < 4:
                continue
            port = fields[3].rsplit(":", 1)[-1]
            if port in TCP_PORTS and port not in busy:
                busy.append(port)
        return busy

    def main_node_ip(self, requested: Optional[str]) -> str:
        """Address CapRover advertises; the first address of 'hostname -I' by default."""
        if requested:
            if not validate_ip(requested) or "/" in requested:
                raise ModuleExecutionError(f"Invalid IP address: {requested}",
                                           module="caprover")
            return requested
        result = self.runner.run(["hostname", "-I"], mutating=False)
        addresses = result.stdout.split()
        if not result.success or not addresses:
            raise ModuleExecutionError("Could not determine the server address; use --ip",
                                       module="caprover")
        return addresses[0]

    def show_status(self) -> None:
        """Log docker, container, service and CLI state."""
        if not self.runner.exists("docker"):
            self.logger.warning("Docker is not installed; CapRover is not deployed")
            return
        if not self.is_docker_active():
            self.logger.warning("Docker is not running")
            return
        containers = self.captain_containers()
        services = self.captain_services()
        self.logger.info(f"CapRover containers: {', '.join(containers) or 'none'}")
        self.logger.info(f"CapRover swarm services: {', '.join(services) or 'none'}")
        if self.runner.exists("caprover"):
            self.logger.info("✓ caprover CLI is installed")
        else:
            self.logger.info("caprover CLI is not installed (use --install-cli)")

    def reset(self) -> None:
        """Remove every trace of a previous CapRover deployment."""
        logger = self.logger
        self.context.backups.backup_paths([self.data_dir])

        for container in self.captain_containers():
            self.runner.run(["docker", "rm", "-f", container])
            logger.info(f"Removed container {container}")
        for service in self.captain_services():
            self.runner.run(["docker", "service", "rm", service])
            logger.info(f"Removed swarm service {service}")

        leave = self.runner.run(["docker", "swarm", "leave", "--force"])
        if not leave.success:
            logger.debug("Node was not part of a swarm")
        self.runner.run(["rm", "-rf", SWARM_STATE_DIR])

        for volume in self.captain_volumes():
            self.runner.run(["docker", "volume", "rm", volume])
        for network in self.captain_networks():
            self.runner.run(["docker", "network", "rm", network])

        self.runner.run(["rm", "-rf", str(self.data_dir)])
        logger.info("CapRover environment removed")

    def prepare_data_dir(self) -> None:
        """Empty data directory owned by CapRover's UID with mode 755."""
        if self.context.dry_run:
            self.logger.info(f"[DRY RUN] Would prepare {self.data_dir}")
            return
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.runner.run(["chown", "-R", f"{CAPTAIN_UID}:{CAPTAIN_UID}", str(self.data_dir)],
                        check=True)
        self.runner.run(["chmod", "-R", "755", str(self.data_dir)], check=True)

        test_file = self.data_dir / ".write-test"
        try:
            test_file.write_bytes(os.urandom(1024))
            test_file.read_bytes()
        except OSError as e:
            raise ModuleExecutionError(f"{self.data_dir} is not writable: {e}",
                                       module="caprover") from e
        finally:
            if test_file.exists():
                test_file.unlink()
        self.logger.info(f"✓ {self.data_dir} ready")

    def open_ports(self) -> None:
        """Allow the platform ports through UFW when it is installed."""
        if not self.runner.exists("ufw"):
            self.logger.warning("UFW not installed; make sure ports "
                                f"{', '.join(TCP_PORTS)} are reachable")
            return
        tcp = self.runner.run(["ufw", "allow", f"{','.join(TCP_PORTS)}/tcp"])
        udp = self.runner.run(["ufw", "allow", f"{','.join(UDP_PORTS)}/udp"])
        if not (tcp.success and udp.success):
            self.logger.warning("Some CapRover ports could not be opened in UFW")

    def start_captain(self, address: str) -> None:
        """Run the captain container with every platform port mapped."""
        command = ["docker", "run", "-d", "--restart=always", "--name", CAPTAIN_NAME]
        for port in TCP_PORTS:
            command += ["-p", f"{port}:{port}"]
        command += [
            "-v", f"{self.data_dir}:/captain",
            "-v", f"{self.docker_socket}:/var/run/docker.sock",
            "-e", "ACCEPTED_TERMS=true",
            "-e", f"MAIN_NODE_IP_ADDRESS={address}",
            CAPTAIN_IMAGE,
        ]
        self.runner.run(command, check=True)
        self.logger.info(f"CapRover starting; the dashboard will be at http://{address}:3000")


def install_cli(context) -> None:
    """Install Docker, Node.js and the caprover CLI through the dependency checker."""
    checker = DependencyChecker(context.runner, context.logger)
    report = checker.ensure(["caprover", "caprover-cli"], install_if_missing=True)
    if not report.ok:
        raise ModuleExecutionError(
            f"Could not install: {', '.join(report.failed + report.missing)}",
            module="caprover",
        )


def configure_caprover(context) -> int:
    args = parse_module_args(create_parser(), context)
    manager = CapRoverManager(context, Path(args.data_dir), Path(args.docker_socket))

    if args.reset and not args.force:
        raise ModuleExecutionError("--reset deletes every CapRover container, service and "
                                   f"the data in {args.data_dir}; add --force to confirm",
                                   module="caprover")

    if args.install_cli:
        install_cli(context)

    if not (args.reset or args.deploy):
        manager.show_status()
        return 0

    manager.ensure_docker()
    manager.check_socket()
    manager.check_disk_space(args.min_disk_gb)

    if args.reset:
        manager.reset()
        manager.prepare_data_dir()

    if args.deploy:
        if not args.reset and manager.captain_containers():
            context.logger.info("CapRover is already running (use --reset --force to redeploy)")
            return 0
        busy = manager.busy_ports()
        if busy:
            raise ModuleExecutionError(f"Ports in use by other processes: {', '.join(busy)}",
                                       module="caprover")
        address = manager.main_node_ip(args.ip)
        if not args.reset:
            manager.prepare_data_dir()
        manager.open_ports()
        manager.start_captain(address)
    return 0
