"""
Deployment State Tracking
Records each step of a deployment run in a JSON file so an interrupted or
failed run can be inspected afterwards.
"""
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DeploymentStep(Enum):
    """Deployment steps in execution order."""
    PROVISION_REGISTRY = "provision-registry"
    REGISTRY_LOGIN = "registry-login"
    BUILD_IMAGE = "build-image"
    TAG_IMAGE = "tag-image"
    PUSH_IMAGE = "push-image"
    PROVISION_SERVICE = "provision-service"


class StepStatus(Enum):
    """Status of a single step."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepState:
    """State of a single deployment step."""
    step: str
    status: str
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    duration_seconds: Optional[float] = None
    resources: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None


@dataclass
class DeploymentState:
    """Complete record of one deployment run."""
    deployment_id: str
    mode: str
    started_at: float
    steps: Dict[str, StepState]
    current_step: Optional[str] = None
    status: str = "in_progress"
    completed_at: Optional[float] = None
    total_duration: Optional[float] = None


class DeploymentStateManager:
    """Manages deployment state tracking."""

    def __init__(self, state_file: str = ".frontend_deploy_state.json"):
        self.state_file = Path(state_file)
        self.state: Optional[DeploymentState] = None

    def start_deployment(self, deployment_id: str, mode: str,
                         steps: Optional[List[DeploymentStep]] = None) -> DeploymentState:
        """Start tracking a new deployment with every step pending."""
        self.state = DeploymentState(
            deployment_id=deployment_id,
            mode=mode,
            started_at=time.time(),
            steps={}
        )

        for step in steps or list(DeploymentStep):
            self.state.steps[step.value] = StepState(
                step=step.value,
                status=StepStatus.PENDING.value
            )

        self._save_state()
        logger.info(f"🚀 Started deployment tracking: {deployment_id} ({mode})")
        return self.state

    def _step_state(self, step: DeploymentStep) -> StepState:
        if not self.state:
            raise ValueError("No active deployment")
        if step.value not in self.state.steps:
            raise ValueError(f"Step {step.value} is not part of deployment {self.state.deployment_id}")
        return self.state.steps[step.value]

    def start_step(self, step: DeploymentStep) -> None:
        """Mark a step as started."""
        step_state = self._step_state(step)
        step_state.status = StepStatus.IN_PROGRESS.value
        step_state.started_at = time.time()

        self.state.current_step = step.value
        self._save_state()

        logger.info(f"📋 Step started: {step.value}")

    def complete_step(self, step: DeploymentStep, resources: Optional[Dict[str, Any]] = None) -> None:
        """Mark a step as completed, recording the resources it produced."""
        step_state = self._step_state(step)
        step_state.status = StepStatus.COMPLETED.value
        step_state.completed_at = time.time()

        if step_state.started_at:
            step_state.duration_seconds = step_state.completed_at - step_state.started_at

        if resources:
            step_state.resources.update(resources)

        self._save_state()

        duration_str = f" in {step_state.duration_seconds:.1f}s" if step_state.duration_seconds else ""
        logger.info(f"✅ Step completed: {step.value}{duration_str}")

    def skip_step(self, step: DeploymentStep, reason: str) -> None:
        step_state = self._step_state(step)
        step_state.status = StepStatus.SKIPPED.value
        step_state.resources['skip_reason'] = reason
        self._save_state()
        logger.info(f"⏭️ Step skipped: {step.value} ({reason})")

    def fail_step(self, step: DeploymentStep, error_message: str) -> None:
        """Mark a step and the whole deployment as failed."""
        step_state = self._step_state(step)
        step_state.status = StepStatus.FAILED.value
        step_state.error_message = error_message
        step_state.completed_at = time.time()

        if step_state.started_at:
            step_state.duration_seconds = step_state.completed_at - step_state.started_at

        self.state.status = "failed"
        self.state.completed_at = time.time()
        self.state.total_duration = self.state.completed_at - self.state.started_at

        self._save_state()

        logger.error(f"❌ Step failed: {step.value} - {error_message}")

    def complete_deployment(self) -> None:
        """Mark the entire deployment as completed."""
        if not self.state:
            raise ValueError("No active deployment")

        self.state.status = "completed"
        self.state.completed_at = time.time()
        self.state.total_duration = self.state.completed_at - self.state.started_at
        self.state.current_step = None

        self._save_state()

        logger.info(f"🎉 Deployment completed: {self.state.deployment_id} in {self.state.total_duration:.1f}s")

    def load_state(self) -> Optional[DeploymentState]:
        """Load deployment state from file."""
        if not self.state_file.exists():
            return None

        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)
            data['steps'] = {
                name: StepState(**step_data) for name, step_data in data['steps'].items()
            }
            self.state = DeploymentState(**data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"⚠️ Failed to load deployment state from {self.state_file}: {e}")
            return None

        logger.info(f"📋 Loaded deployment state: {self.state.deployment_id}")
        return self.state

    def _save_state(self) -> None:
        """Save deployment state to file."""
        if not self.state:
            return

        try:
            with open(self.state_file, 'w') as f:
                json.dump(asdict(self.state), f, indent=2)
        except OSError as e:
            logger.error(f"❌ Failed to save deployment state: {e}")

    def cleanup_state_file(self) -> None:
        """Remove deployment state file."""
        if self.state_file.exists():
            self.state_file.unlink()
            logger.info(f"🗑️ Cleaned up state file: {self.state_file}")
        self.state = None

    def get_status_summary(self) -> Dict[str, Any]:
        """Get deployment status summary."""
        if not self.state:
            return {"status": "no_deployment"}

        completed_steps = sum(1 for step in self.state.steps.values()
                              if step.status == StepStatus.COMPLETED.value)
        total_steps = len(self.state.steps)

        return {
            "deployment_id": self.state.deployment_id,
            "mode": self.state.mode,
            "status": self.state.status,
            "current_step": self.state.current_step,
            "progress": f"{completed_steps}/{total_steps}",
            "duration": self.state.total_duration,
            "started_at": self.state.started_at,
            "steps": {
                name: {
                    "status": step.status,
                    "duration": step.duration_seconds,
                    "error": step.error_message
                } for name, step in self.state.steps.items()
            }
        }


def create_deployment_id(mode: str) -> str:
    """Create unique deployment ID."""
    timestamp = int(time.time())
    return f"{mode}-{timestamp}"
