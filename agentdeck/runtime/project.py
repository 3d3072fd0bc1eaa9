from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

SYSTEM_DIRNAME = ".agentdeck"


@dataclass(frozen=True, slots=True)
class RuntimePaths:
    project_root: Path
    system_dir: Path
    config_dir: Path
    events_path: Path
    responses_path: Path
    state_dir: Path

    @property
    def env_path(self) -> Path:
        return self.config_dir / "env"

    @property
    def history_path(self) -> Path:
        return self.state_dir / "history.txt"

    @staticmethod
    def for_project(project_root: Path) -> "RuntimePaths":
        project_root = project_root.expanduser().resolve()
        system_dir = project_root / SYSTEM_DIRNAME
        return RuntimePaths(
            project_root=project_root,
            system_dir=system_dir,
            config_dir=system_dir / "config",
            events_path=system_dir / "events.jsonl",
            responses_path=system_dir / "responses.jsonl",
            state_dir=system_dir / "state",
        )

    @staticmethod
    def discover(start: Path | None = None) -> "RuntimePaths":
        here = (start or Path.cwd()).expanduser().resolve()
        home = Path.home().resolve()
        for directory in [here, *here.parents]:
            if directory == home:
                # ~/.agentdeck holds the global config, not a project.
                continue
            candidate = directory / SYSTEM_DIRNAME
            if candidate.is_dir():
                return RuntimePaths.for_project(directory)
        raise FileNotFoundError(f"No agentdeck project found (missing {SYSTEM_DIRNAME} directory).")
