"""Run external development tools (go, buf, flutter, docker, helm, kubectl)."""

from __future__ import annotations

import os
import shutil
import subprocess
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from eggkit import ui

REQUIRED_TOOLS = ("go", "buf", "docker", "kubectl", "helm")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command; ``duration`` is in seconds."""

    exit_code: int
    stdout: str
    stderr: str
    duration: float


class CommandError(Exception):
    """A command could not be started or finished unsuccessfully."""

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class ToolNotFoundError(Exception):
    """One or more tools are not available on PATH."""

    def __init__(self, message: str, missing: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.missing = list(missing)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return str(value)


class Runner:
    """Runs commands in a working directory and captures their output."""

    def __init__(
        self,
        work_dir: str | os.PathLike[str] | None = None,
        *,
        verbose: bool = False,
        timeout: float | None = None,
    ) -> None:
        self.work_dir = work_dir
        self.verbose = verbose
        self.timeout = timeout

    def _execute(self, name: str, args: tuple[str, ...]) -> CommandResult:
        start = time.monotonic()
        env = None
        # Keep a parent workspace from interfering with a new one.
        if name == "go" and args[:2] == ("work", "init"):
            env = {**os.environ, "GOWORK": "off"}

        if self.verbose:
            ui.debug("Running: %s %s", name, " ".join(args))

        cwd = os.fspath(self.work_dir) if self.work_dir else None
        try:
            completed = subprocess.run(
                [name, *args],
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            result = CommandResult(
                -1, _text(exc.stdout), _text(exc.stderr), time.monotonic() - start
            )
            raise CommandError(
                f"command failed: timed out after {self.timeout}s", result
            ) from exc
        except OSError as exc:
            result = CommandResult(-1, "", "", time.monotonic() - start)
            raise CommandError(f"command failed: {exc}", result) from exc

        result = CommandResult(
            exit_code=completed.returncode,
            stdout=_text(completed.stdout),
            stderr=_text(completed.stderr),
            duration=time.monotonic() - start,
        )
        if result.exit_code != 0:
            raise CommandError(
                f"command exited with code {result.exit_code}: {result.stderr}", result
            )
        return result

    def _run(self, failure: str, name: str, args: Iterable[str]) -> CommandResult:
        try:
            return self._execute(name, tuple(args))
        except CommandError as exc:
            raise CommandError(f"{failure}: {exc}", exc.result) from exc

    def _report(self, result: CommandResult, fmt: str, *args: Any) -> None:
        if self.verbose:
            ui.debug(fmt, *args)
            ui.debug("Output: %s", result.stdout)

    def go(self, *args: str) -> CommandResult:
        """Run ``go`` with the given arguments."""
        return self._execute("go", args)

    def buf(self, *args: str) -> CommandResult:
        """Run ``buf`` with the given arguments."""
        return self._execute("buf", args)

    def flutter(self, *args: str) -> CommandResult:
        """Run ``flutter`` with the given arguments."""
        return self._execute("flutter", args)

    def docker(self, *args: str) -> CommandResult:
        """Run ``docker`` with the given arguments."""
        return self._execute("docker", args)

    def helm(self, *args: str) -> CommandResult:
        """Run ``helm`` with the given arguments."""
        return self._execute("helm", args)

    def kubectl(self, *args: str) -> CommandResult:
        """Run ``kubectl`` with the given arguments."""
        return self._execute("kubectl", args)

    def exec(self, name: str, *args: str) -> CommandResult:
        """Run an arbitrary command."""
        return self._execute(name, args)

    def go_mod_init(self, module_path: str) -> None:
        """Initialise a Go module."""
        result = self._run(
            "failed to initialize Go module", "go", ["mod", "init", module_path]
        )
        self._report(result, "Go module initialized: %s", module_path)

    def go_mod_tidy(self) -> None:
        """Tidy Go module dependencies."""
        result = self._run("failed to tidy Go module", "go", ["mod", "tidy"])
        self._report(result, "Go module tidied")

    def go_work_init(self, *args: str) -> None:
        """Initialise a Go workspace with the given modules."""
        result = self._run(
            "failed to initialize Go workspace", "go", ["work", "init", *args]
        )
        self._report(result, "Go workspace initialized with modules: %s", list(args))

    def go_work_use(self, *args: str) -> None:
        """Add each module to the Go workspace, one command per module."""
        for module in args:
            result = self._run(
                "failed to add module to workspace", "go", ["work", "use", module]
            )
            self._report(result, "Added module to workspace: %s", module)

    def buf_generate(self) -> None:
        """Generate code from protobuf definitions."""
        result = self._run("failed to generate code with buf", "buf", ["generate"])
        self._report(result, "Code generation completed")

    def flutter_create(self, project_name: str, platforms: Iterable[str]) -> None:
        """Create a Flutter project for the given platforms."""
        platforms = list(platforms)
        args = ["create", project_name]
        if platforms:
            args += ["--platforms", ",".join(platforms)]
        result = self._run("failed to create Flutter project", "flutter", args)
        self._report(
            result, "Flutter project created: %s (platforms: %s)", project_name, platforms
        )

    @staticmethod
    def _build_arg_flags(build_args: Mapping[str, str]) -> list[str]:
        flags: list[str] = []
        for key, value in build_args.items():
            flags += ["--build-arg", f"{key}={value}"]
        return flags

    def docker_build(self, image_name: str, dockerfile: str, context: str) -> None:
        """Build a Docker image."""
        self.docker_build_with_args(image_name, dockerfile, context, {})

    def docker_build_with_args(
        self,
        image_name: str,
        dockerfile: str,
        context: str,
        build_args: Mapping[str, str],
    ) -> None:
        """Build a Docker image with build arguments."""
        args = ["build", "-t", image_name]
        if dockerfile:
            args += ["-f", dockerfile]
        args += self._build_arg_flags(build_args)
        args.append(context)
        result = self._run("failed to build Docker image", "docker", args)
        self._report(result, "Docker image built: %s", image_name)

    def docker_buildx(
        self,
        image_name: str,
        dockerfile: str,
        context: str,
        platforms: str,
        push: bool,
        load: bool,
    ) -> None:
        """Build a multi-platform image with buildx; ``push`` wins over ``load``."""
        self.docker_buildx_with_args(
            image_name, dockerfile, context, platforms, push, load, {}
        )

    def docker_buildx_with_args(
        self,
        image_name: str,
        dockerfile: str,
        context: str,
        platforms: str,
        push: bool,
        load: bool,
        build_args: Mapping[str, str],
    ) -> None:
        """Build a multi-platform image with buildx and build arguments."""
        args = ["buildx", "build"]
        if platforms:
            args += ["--platform", platforms]
        args += ["-t", image_name]
        if dockerfile:
            args += ["-f", dockerfile]
        args += self._build_arg_flags(build_args)
        if push:
            args.append("--push")
        elif load:
            args.append("--load")
        args.append(context)
        result = self._run("failed to build Docker image with buildx", "docker", args)
        self._report(
            result, "Docker image built with buildx: %s (platforms: %s)", image_name, platforms
        )

    def docker_push(self, image_name: str) -> None:
        """Push a Docker image to its registry."""
        result = self._run("failed to push Docker image", "docker", ["push", image_name])
        self._report(result, "Docker image pushed: %s", image_name)

    def helm_template(self, chart: str, values: str, output_dir: str) -> None:
        """Render Helm templates."""
        args = ["template", chart]
        if values:
            args += ["-f", values]
        if output_dir:
            args += ["--output-dir", output_dir]
        result = self._run("failed to render Helm templates", "helm", args)
        self._report(result, "Helm templates rendered")

    def kubectl_apply(self, manifest: str, namespace: str) -> None:
        """Apply Kubernetes manifests."""
        args = ["apply", "-f", manifest]
        if namespace:
            args += ["-n", namespace]
        result = self._run("failed to apply Kubernetes manifests", "kubectl", args)
        self._report(result, "Kubernetes manifests applied")


def check_tool_availability(tool_name: str) -> bool:
    """Return ``True`` if the tool is on PATH; raise :class:`ToolNotFoundError` if not."""
    if shutil.which(tool_name) is None:
        raise ToolNotFoundError(f"tool not found in PATH: {tool_name}", [tool_name])
    return True


def check_required_tools() -> None:
    """Raise :class:`ToolNotFoundError` naming every required tool that is missing."""
    missing = []
    for tool in REQUIRED_TOOLS:
        try:
            check_tool_availability(tool)
        except ToolNotFoundError:
            missing.append(tool)
    if missing:
        raise ToolNotFoundError(
            f"missing required tools: {', '.join(missing)}", missing
        )


def _version(command: list[str], failure: str) -> str:
    try:
        completed = subprocess.run(
            command, capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise CommandError(f"{failure}: {exc}") from exc
    return _text(completed.stdout).strip()


def get_go_version() -> str:
    """Return the output of ``go version``."""
    return _version(["go", "version"], "failed to get Go version")


def get_buf_version() -> str:
    """Return the output of ``buf --version``."""
    return _version(["buf", "--version"], "failed to get buf version")