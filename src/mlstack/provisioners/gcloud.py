"""gcloud CLI wrapper shared by the concrete provisioners."""

import json
import re
import shlex
import subprocess
import threading
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Type

from mlstack.config.models import ATTRIBUTE_MODELS, AttributesModel
from mlstack.provisioners.base import BaseProvisioner
from mlstack.utils.errors import (
    ErrorContext,
    PermanentProviderError,
    TransientProviderError,
    error_handler,
)
from mlstack.utils.logging import get_logger, redaction_filter

logger = get_logger(__name__)

# stderr of a describe/delete on something that is not there
NOT_FOUND_PATTERN = re.compile(
    r"not[ _]found|does not exist|was not found|404|no such", re.IGNORECASE
)


class GcloudRunner:
    """Runs gcloud commands and turns failures into typed provider errors."""

    def __init__(self, gcloud_path: str = "gcloud", timeout: int = 1800):
        """Initialize runner.

        Args:
            gcloud_path: gcloud executable
            timeout: Seconds before a single command is abandoned
        """
        self.gcloud_path = gcloud_path
        self.timeout = timeout
        self._enabled_services: Dict[str, Set[str]] = {}
        self._services_lock = threading.Lock()

    def run(
        self,
        args: List[str],
        context: Optional[ErrorContext] = None,
        parse_json: bool = True,
        allow_missing: bool = False
    ) -> Any:
        """Run one gcloud command.

        Args:
            args: Arguments after the executable
            context: Resource the command acts on, for error messages
            parse_json: Request JSON output and decode it
            allow_missing: Return None instead of failing when the target
                does not exist

        Returns:
            Decoded JSON (or raw stdout), None for a missing target

        Raises:
            TransientProviderError: Timeout, rate limit or unavailability
            PermanentProviderError: Any other failure
        """
        command = [self.gcloud_path, *args, "--quiet"]
        if parse_json:
            command.append("--format=json")

        # Redact before quoting; quoting rewrites secrets that contain quotes
        printable = " ".join(shlex.quote(redaction_filter.redact(part)) for part in command)
        context = context or ErrorContext()
        context.command = printable
        logger.debug(f"Running: {printable}")

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )
        except FileNotFoundError as e:
            raise PermanentProviderError(
                f"gcloud executable not found: {self.gcloud_path}",
                context=context,
                cause=e,
                suggestions=[
                    "Install the Google Cloud SDK",
                    "Or point MLSTACK_GCLOUD_PATH at the gcloud executable",
                ]
            )
        except subprocess.TimeoutExpired as e:
            raise TransientProviderError(
                f"Command timed out after {self.timeout}s: {printable}",
                context=context,
                cause=e
            )

        if completed.returncode != 0:
            stderr = redaction_filter.redact(completed.stderr or "")
            if allow_missing and NOT_FOUND_PATTERN.search(stderr):
                logger.debug(f"Target does not exist: {printable}")
                return None
            raise error_handler.classify(stderr, context)

        if not parse_json:
            return completed.stdout

        output = (completed.stdout or "").strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise PermanentProviderError(
                f"Unexpected non-JSON output from: {printable}",
                context=context,
                cause=e
            )

    def ensure_services(self, project: str, services: Iterable[str]) -> None:
        """Enable APIs on a project unless already enabled.

        The enabled set is listed once per project and cached for the life of
        the runner.
        """
        with self._services_lock:
            enabled = self._enabled_services.get(project)
            if enabled is None:
                listed = self.run(["services", "list", "--enabled", f"--project={project}"]) or []
                enabled = {self._service_name(entry) for entry in listed}
                self._enabled_services[project] = enabled

            missing = sorted(set(services) - enabled)
            if not missing:
                return
            logger.info(f"Enabling APIs on {project}: {', '.join(missing)}")
            self.run(
                ["services", "enable", *missing, f"--project={project}"],
                context=ErrorContext(operation="enable-services"),
                parse_json=False
            )
            enabled.update(missing)

    @staticmethod
    def _service_name(entry: Dict[str, Any]) -> str:
        # Entries carry config.name, or a projects/N/services/NAME path
        return entry.get("config", {}).get("name") or entry.get("name", "").rsplit("/", 1)[-1]


class GcloudProvisioner(BaseProvisioner):
    """Base of provisioners backed by the gcloud CLI.

    Handles are resource paths that carry the project, so a handle alone is
    enough to describe or delete the resource.
    """

    # APIs enabled on the project before the first create
    REQUIRED_SERVICES: Tuple[str, ...] = ()

    def __init__(self, runner: GcloudRunner):
        self.runner = runner
        self.logger = get_logger(self.__class__.__module__)

    @property
    def model(self) -> Type[AttributesModel]:
        return ATTRIBUTE_MODELS[self.kind]

    def parse(self, attributes: Dict[str, Any]) -> AttributesModel:
        """Typed view of resolved attributes."""
        return self.model.model_validate(attributes, context={"resolved": True})

    def validate(self, resource_id: str, attributes: Dict[str, Any]) -> None:
        super().validate(resource_id, attributes)
        if not attributes.get("project"):
            raise PermanentProviderError(
                f"{self.kind.value} '{resource_id}' has no project",
                context=self._context(resource_id=resource_id),
                suggestions=["Set project.name in the desired state file"]
            )

    def prepare(self, attributes: Dict[str, Any]) -> None:
        if self.REQUIRED_SERVICES:
            self.runner.ensure_services(attributes["project"], self.REQUIRED_SERVICES)

    def _context(self, handle: Optional[str] = None, resource_id: Optional[str] = None) -> ErrorContext:
        return ErrorContext(
            resource_id=resource_id,
            resource_kind=self.kind.value,
            additional_info={"handle": handle} if handle else None
        )

    @staticmethod
    def _bool_flag(name: str, enabled: bool) -> str:
        return f"--{name}" if enabled else f"--no-{name}"

    @staticmethod
    def _split_handle(handle: str, pattern: "re.Pattern[str]") -> Dict[str, str]:
        match = pattern.fullmatch(handle)
        if not match:
            raise PermanentProviderError(f"Malformed provider handle: {handle}")
        return match.groupdict()

    def _require_unchanged(self, handle: str, field_name: str, current: Any, desired: Any) -> None:
        """Fail on attributes the provider cannot change in place."""
        if current is not None and desired is not None and str(current) != str(desired):
            raise PermanentProviderError(
                f"{field_name} of {handle} cannot be changed in place "
                f"(current: {current}, desired: {desired})",
                context=self._context(handle),
                suggestions=["Declare a new resource id and remove the old one with --prune"]
            )
