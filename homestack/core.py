"""
Core deployment functionality for homestack.

Handles:
- Infrastructure preconditions (runtime reachable, shared networks)
- Regeneration of derived .env files when config sources change
- Drift detection against the deployment state
- Sequential per-stack apply + health verification
- Committing deployment records
"""

import time
import logging
from typing import Optional, Dict, List, Iterable, Tuple, Callable
from dataclasses import dataclass, field

from .config import HomeConfig
from .envs import EnvGenerator
from .errors import RuntimeUnavailableError, UnknownStackError
from .hashing import compute_fingerprint, fingerprint
from .health import HealthVerifier
from .registry import StackDescriptor, StackRegistry
from .services import ComposeRuntime, StackStatus
from .state import DeploymentRecord, DeploymentState, DeploymentStateStore, human_timestamp

logger = logging.getLogger(__name__)


@dataclass
class DeploymentResult:
    """Result of a reconciliation run."""
    success: bool
    message: str
    targets: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    services_started: List[str] = field(default_factory=list)
    services_failed: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    envs_regenerated: bool = False
    duration_seconds: float = 0.0

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    @property
    def counts(self) -> str:
        return f"{len(self.services_started)}/{len(self.targets)}"


class StackDeployer:
    """
    Reconciles running stacks with the configuration on disk.

    Collaborators are injectable so tests can swap the container runtime,
    the state store and the clock.
    """

    def __init__(
        self,
        config: Optional[HomeConfig] = None,
        runtime: Optional[ComposeRuntime] = None,
        store: Optional[DeploymentStateStore] = None,
        registry: Optional[StackRegistry] = None,
        envs: Optional[EnvGenerator] = None,
        verifier: Optional[HealthVerifier] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or HomeConfig.load()
        self.runtime = runtime or ComposeRuntime()
        self.store = store or DeploymentStateStore(self.config.state_file)
        self.registry = registry or StackRegistry(self.config.docker_dir, self.config.manifest_names)
        self.envs = envs or EnvGenerator(self.config)
        self.verifier = verifier or HealthVerifier(
            self.runtime, settle_delay=self.config.health_settle_delay, sleep=sleep
        )
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Fingerprints
    # ------------------------------------------------------------------

    def stack_fingerprint(self, stack: StackDescriptor) -> str:
        return fingerprint([stack.path])

    def config_sources_fingerprint(self) -> str:
        result = compute_fingerprint(self.config.config_source_paths())
        return result.digest

    def changed_stacks(
        self, stacks: Iterable[StackDescriptor], state: DeploymentState
    ) -> Dict[str, str]:
        """Map of drifted stack name -> current fingerprint."""
        changed = {}
        for stack in stacks:
            current = self.stack_fingerprint(stack)
            record = state.get_record(stack.name)
            if record is None or record.fingerprint != current:
                changed[stack.name] = current
        return changed

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def initialize_infrastructure(self) -> List[str]:
        """Check the runtime and create shared networks. Returns networks created."""
        if not self.runtime.is_available():
            raise RuntimeUnavailableError(
                "Docker is not running or not installed "
                "(start it with: sudo systemctl start docker)"
            )
        created = []
        for network in self.config.shared_networks():
            if self.runtime.ensure_network(network):
                created.append(network)
        logger.info("Infrastructure initialized")
        return created

    def regenerate_env_files(
        self,
        stacks: List[StackDescriptor],
        state: DeploymentState,
        force: bool,
        result: DeploymentResult,
    ) -> bool:
        """Regenerate derived .env files if config sources changed. Returns True if regenerated."""
        current = self.config_sources_fingerprint()
        if not force and current == state.config_sources_hash:
            logger.debug("Config sources unchanged, .env files are current")
            return False

        if not self.envs.available():
            message = (
                f"Private config not linked at {self.config.private_dir}; "
                ".env files were not regenerated"
            )
            logger.warning(message)
            result.warnings.append(message)
            return False

        reason = "forced" if force else "config sources changed"
        logger.info(f"Regenerating .env files ({reason})")
        for generated in self.envs.generate_all(stacks):
            result.warnings.extend(generated.warnings)

        state.config_sources_hash = current
        self.store.save(state)
        return True

    def resolve_targets(
        self,
        stacks: List[StackDescriptor],
        state: DeploymentState,
        requested: List[str],
        force_all: bool,
        result: DeploymentResult,
    ) -> Dict[str, str]:
        """Decide which stacks to deploy. Returns name -> fingerprint, in registry order."""
        changed = self.changed_stacks(stacks, state)

        if not requested:
            if force_all:
                logger.info("Deploying all stacks (forced)")
                return {s.name: changed.get(s.name) or self.stack_fingerprint(s) for s in stacks}
            if changed:
                logger.info(f"Stacks with detected changes: {', '.join(changed)}")
            return changed

        wanted = set(requested)
        in_scope = [s for s in stacks if s.name in wanted]
        specified_changed = [s.name for s in in_scope if s.name in changed]
        specified_unchanged = [s.name for s in in_scope if s.name not in changed]

        if specified_changed:
            logger.info(f"Requested stacks with changes: {', '.join(specified_changed)}")
        if specified_unchanged:
            if force_all:
                logger.info(f"Deploying unchanged stacks too (forced): {', '.join(specified_unchanged)}")
            else:
                logger.info(f"Unchanged, skipping: {', '.join(specified_unchanged)}")
                result.skipped.extend(specified_unchanged)

        targets = {}
        for stack in in_scope:
            if stack.name in changed:
                targets[stack.name] = changed[stack.name]
            elif force_all:
                targets[stack.name] = self.stack_fingerprint(stack)
        return targets

    def deploy_stack(self, stack: StackDescriptor, recreate: bool = False) -> Tuple[bool, str]:
        """Apply one stack and verify it. Returns (ok, failure reason)."""
        logger.info(f"Deploying stack: {stack.name}")
        applied = self.runtime.apply(stack, recreate=recreate)
        if not applied.ok:
            logger.error(f"Deployment of {stack.name} failed: {applied.output}")
            return False, "deployment error"

        if self.config.convergence_delay > 0:
            self._sleep(self.config.convergence_delay)

        if not self.verifier.verify(stack):
            tail = self.runtime.logs_tail(stack)
            if tail:
                logger.warning(f"Recent logs for {stack.name}:\n{tail}")
            return False, "health check failed"
        return True, ""

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def reconcile(
        self,
        requested: Iterable[str] = (),
        force_all: bool = False,
        force_envs: bool = False,
        recreate: bool = False,
        skip_infrastructure: bool = False,
    ) -> DeploymentResult:
        """
        Deploy what needs deploying.

        Args:
            requested: Stack names to consider; empty means every stack
            force_all: Deploy targets even if their fingerprint is unchanged
            force_envs: Regenerate .env files even if sources are unchanged
            recreate: Force-recreate containers instead of down/up
            skip_infrastructure: Skip the runtime and network checks

        Raises:
            UnknownStackError: a requested name is not a known stack
            RuntimeUnavailableError: Docker is not reachable
        """
        start_time = self._clock()
        requested = list(dict.fromkeys(requested))
        result = DeploymentResult(success=True, message="")

        stacks = self.registry.discover()
        unknown = sorted(set(requested) - {s.name for s in stacks})
        if unknown:
            raise UnknownStackError(unknown, available=[s.name for s in stacks])

        with self.store.lock():
            if not skip_infrastructure:
                self.initialize_infrastructure()

            state = self.store.load()
            result.envs_regenerated = self.regenerate_env_files(stacks, state, force_envs, result)

            targets = self.resolve_targets(stacks, state, requested, force_all, result)
            result.targets = list(targets)
            if not targets:
                result.message = "No stack requires deployment"
                logger.info(result.message)
                result.duration_seconds = self._clock() - start_time
                return result

            by_name = {s.name: s for s in stacks}
            for name, current in targets.items():
                ok, reason = self.deploy_stack(by_name[name], recreate=recreate)
                if not ok:
                    result.services_failed.append(name)
                    result.failures[name] = reason
                    continue

                now = int(self._clock())
                state.put_record(DeploymentRecord(
                    stack_name=name,
                    fingerprint=current,
                    deployed_at_epoch=now,
                    deployed_at_human=human_timestamp(now),
                ))
                self.store.save(state)
                result.services_started.append(name)

            if not result.services_failed:
                state.mark_deployed(int(self._clock()))
                self.store.save(state)

        result.success = not result.services_failed
        if result.success:
            result.message = f"Deployed {result.counts} stacks"
        else:
            failed = ", ".join(f"{n} ({r})" for n, r in result.failures.items())
            result.message = f"Deployed {result.counts} stacks; failed: {failed}"
        logger.info(result.message)
        result.duration_seconds = self._clock() - start_time
        return result

    def list_stacks(self) -> List[Tuple[StackDescriptor, StackStatus]]:
        """Discovered stacks with their coarse running status."""
        return [(stack, self.runtime.status(stack)) for stack in self.registry.discover()]

    def drift_report(self) -> Dict[str, bool]:
        """Stack name -> whether it drifted since its last deployment."""
        stacks = self.registry.discover()
        changed = self.changed_stacks(stacks, self.store.load())
        return {s.name: s.name in changed for s in stacks}

    def deployment_info(self) -> Optional[DeploymentState]:
        """Stored state, or None if nothing was ever deployed."""
        if not self.store.exists():
            return None
        return self.store.load()
