"""Execution profiles, resource budgets and command policy.

A run's budget is chosen once from the profile × scope table and is only
ever incremented afterwards. The per-profile command policy decides whether
the Coder may install packages.
"""

from __future__ import annotations

from dataclasses import dataclass

from wayfinder.core.state import Budget, CommandRecord, ExecutionProfile, TaskScope


@dataclass(frozen=True)
class CommandPolicy:
    max_commands: int
    max_test_runs: int
    allow_package_installs: bool
    allow_app_run: bool


PROFILE_POLICIES: dict[ExecutionProfile, CommandPolicy] = {
    ExecutionProfile.STRICT: CommandPolicy(20, 5, allow_package_installs=True, allow_app_run=True),
    ExecutionProfile.FAST: CommandPolicy(8, 3, allow_package_installs=False, allow_app_run=True),
    ExecutionProfile.SMOKE: CommandPolicy(3, 1, allow_package_installs=False, allow_app_run=False),
    ExecutionProfile.YOLO: CommandPolicy(15, 4, allow_package_installs=True, allow_app_run=True),
}

# (max_commands, max_test_runs, max_web_requests)
BUDGET_TABLE: dict[tuple[ExecutionProfile, TaskScope], tuple[int, int, int]] = {
    (ExecutionProfile.STRICT, TaskScope.TINY):   (20, 4, 10),
    (ExecutionProfile.STRICT, TaskScope.NORMAL): (40, 8, 20),
    (ExecutionProfile.STRICT, TaskScope.LARGE):  (60, 10, 30),
    (ExecutionProfile.FAST, TaskScope.TINY):     (15, 3, 8),
    (ExecutionProfile.FAST, TaskScope.NORMAL):   (30, 5, 15),
    (ExecutionProfile.FAST, TaskScope.LARGE):    (45, 8, 25),
    (ExecutionProfile.SMOKE, TaskScope.TINY):    (8, 2, 5),
    (ExecutionProfile.SMOKE, TaskScope.NORMAL):  (15, 3, 8),
    (ExecutionProfile.SMOKE, TaskScope.LARGE):   (25, 5, 12),
    (ExecutionProfile.YOLO, TaskScope.TINY):     (15, 2, 8),
    (ExecutionProfile.YOLO, TaskScope.NORMAL):   (25, 4, 12),
    (ExecutionProfile.YOLO, TaskScope.LARGE):    (40, 6, 20),
}

_INSTALL_PREFIXES = (
    "npm install",
    "npm i ",
    "pnpm add",
    "pnpm install",
    "yarn add",
    "pip install",
    "pip3 install",
    "python -m pip install",
    "uv add",
    "uv pip install",
    "poetry add",
    "go get",
    "cargo add",
)

_HEAVY_MARKERS = ("playwright install", "flet run", "npm start", "react-scripts start", "next dev")


def initial_budget(profile: ExecutionProfile, scope: TaskScope) -> Budget:
    """Look up the budget for a profile × scope pair."""
    max_commands, max_test_runs, max_web = BUDGET_TABLE[(ExecutionProfile(profile), TaskScope(scope))]
    return Budget(
        max_commands=max_commands,
        max_test_runs=max_test_runs,
        max_web_requests=max_web,
    )


def policy_for(profile: ExecutionProfile | str | None) -> CommandPolicy:
    try:
        return PROFILE_POLICIES[ExecutionProfile(profile)]
    except ValueError:
        return PROFILE_POLICIES[ExecutionProfile.FAST]


def looks_like_install(command: str) -> bool:
    cmd = command.strip().lower()
    return cmd.startswith(_INSTALL_PREFIXES) or cmd in ("npm i", "npm install")


def looks_like_heavy_command(command: str) -> bool:
    cmd = command.strip().lower()
    return any(marker in cmd for marker in _HEAVY_MARKERS)


def charge_command(budget: Budget, command: str, node: str) -> Budget:
    """Return a copy of *budget* with one command recorded."""
    updated = budget.model_copy(deep=True)
    updated.commands_used += 1
    updated.command_history.append(CommandRecord(command=command, node=node))
    return updated


def charge_test_run(budget: Budget, command: str, node: str) -> Budget:
    updated = budget.model_copy(deep=True)
    updated.test_runs_used += 1
    updated.command_history.append(CommandRecord(command=command, node=node))
    return updated


def charge_web_request(budget: Budget, count: int = 1) -> Budget:
    updated = budget.model_copy(deep=True)
    updated.web_requests_used += count
    return updated


def repeated_commands(budget: Budget, minimum: int = 2) -> list[tuple[str, int]]:
    """Commands run at least *minimum* times, most frequent first."""
    counts: dict[str, int] = {}
    for record in budget.command_history:
        counts[record.command] = counts.get(record.command, 0) + 1
    repeated = [(cmd, n) for cmd, n in counts.items() if n >= minimum]
    return sorted(repeated, key=lambda item: item[1], reverse=True)
