"""Launching the external AI review agent for a pull request.

The agent is an opaque process. It receives one textual instruction naming the
pull request, the skill to use and the guideline file to follow; whatever it
does afterwards (comments, approvals) is only visible on the hosting service.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path

from prwarden_core.launcher import LaunchController, LaunchMode, LaunchOutcome
from prwarden_core.models import PullRequestRef

logger = logging.getLogger(__name__)

DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_SKILL = "code-review"


def build_prompt(ref: PullRequestRef, skill: str, guidelines_path: str | Path) -> str:
    title = ref.title.replace('"', '\\"')
    return (
        f'Review PR #{ref.number} in repo {ref.full_name}. Title: "{title}". '
        f"Use the {skill} skill to analyze changes, present each issue for approval, "
        f"and submit approved comments using gh CLI. Follow guidelines in {guidelines_path}"
    )


class AgentLauncher:
    """Callable that launches the agent for one pull request.

    Raises LaunchError when no launch mode could start it, which the polling
    scheduler records as a failed trigger.
    """

    def __init__(
        self,
        controller: LaunchController,
        guidelines_path: str | Path,
        command: str = DEFAULT_AGENT_COMMAND,
        skill: str = DEFAULT_SKILL,
        repo_paths: dict[str, str] | None = None,
        mode: LaunchMode | None = None,
    ):
        self._controller = controller
        self._guidelines_path = guidelines_path
        self._command = command
        self._skill = skill
        self._repo_paths = repo_paths or {}
        self._mode = mode

    @classmethod
    def from_config(cls, controller: LaunchController, config: dict) -> AgentLauncher:
        agent = config.get("agent") or {}
        return cls(
            controller,
            guidelines_path=config["guidelines_path"],
            command=agent.get("command") or DEFAULT_AGENT_COMMAND,
            skill=agent.get("skill") or DEFAULT_SKILL,
            repo_paths=config.get("repo_paths") or {},
        )

    def working_dir(self, ref: PullRequestRef) -> str | None:
        configured = self._repo_paths.get(ref.full_name)
        if not configured:
            return None
        path = Path(configured).expanduser()
        if not path.is_dir():
            logger.warning("Checkout %s for %s does not exist; launching in the current directory", path, ref.full_name)
            return None
        return str(path)

    def command_line(self, ref: PullRequestRef) -> str:
        prompt = build_prompt(ref, self._skill, self._guidelines_path)
        return f"{self._command} {shlex.quote(prompt)}"

    def __call__(self, ref: PullRequestRef) -> LaunchOutcome:
        logger.info("Launching review agent for %s", ref)
        return self._controller.launch(self.command_line(ref), mode=self._mode, cwd=self.working_dir(ref))
