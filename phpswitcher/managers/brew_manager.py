import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from ..core import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandStep:
    """One idempotent external command in an orchestration sequence."""
    description: str
    command: Tuple[str, ...]
    privileged: bool = False


def brew_step(paths: config.EnvironmentPaths, args: Sequence[str], privileged: bool = False) -> CommandStep:
    label = f"{'sudo ' if privileged else ''}brew {' '.join(args)}"
    return CommandStep(label, (str(paths.brew), *args), privileged)


def valet_step(paths: config.EnvironmentPaths, args: Sequence[str]) -> CommandStep:
    return CommandStep(f"valet {' '.join(args)}", (str(paths.valet), *args), False)


def use_version_steps(paths: config.EnvironmentPaths, version: str) -> List[CommandStep]:
    return [valet_step(paths, ["use", f"{config.PHP_FORMULA_PREFIX}{version}"])]


def restart_service_steps(paths: config.EnvironmentPaths, service: config.ServiceDescriptor,
                          formula: str = "") -> List[CommandStep]:
    return [brew_step(paths, ["services", "restart", formula or service.formula],
                      privileged=service.requires_privilege)]


def restart_all_steps(paths: config.EnvironmentPaths, php_formula: str) -> List[CommandStep]:
    steps: List[CommandStep] = []
    steps += restart_service_steps(paths, config.SERVICES["dnsmasq"])
    steps += restart_service_steps(paths, config.SERVICES["php"], php_formula)
    steps += restart_service_steps(paths, config.SERVICES["nginx"])
    return steps


def force_recover_steps(paths: config.EnvironmentPaths, versions: Iterable[str], alias: str) -> List[CommandStep]:
    """
    Builds the "fix my PHP" sequence.

    Services are stopped through both the user-level and the root-level
    service manager since it is not known beforehand which one owns them.
    Every step is safe to repeat.
    """
    dnsmasq = config.SERVICES["dnsmasq"].formula
    nginx = config.SERVICES["nginx"].formula
    php = config.PHP_FORMULA

    steps = [brew_step(paths, ["services", "stop", dnsmasq], privileged=True)]
    for version in versions:
        formula = php if version == alias else f"{config.PHP_FORMULA_PREFIX}{version}"
        steps.append(brew_step(paths, ["unlink", f"{config.PHP_FORMULA_PREFIX}{version}"]))
        steps.append(brew_step(paths, ["services", "stop", formula]))
        steps.append(brew_step(paths, ["services", "stop", formula], privileged=True))

    steps += [
        brew_step(paths, ["services", "stop", php]),
        brew_step(paths, ["services", "stop", nginx]),
        brew_step(paths, ["link", php]),
        brew_step(paths, ["services", "restart", dnsmasq], privileged=True),
        brew_step(paths, ["services", "stop", php], privileged=True),
        brew_step(paths, ["services", "stop", nginx], privileged=True),
    ]
    logger.debug(f"BREW_MANAGER: Built force-recover sequence with {len(steps)} steps.")
    return steps
