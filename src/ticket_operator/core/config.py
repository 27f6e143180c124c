import dataclasses
import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, cast

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError

logger = logging.getLogger("ticket_operator.core.config")

TICKETS_DIRNAME = ".tickets"
OPERATOR_DIRNAME = "operator"
CONFIG_FILENAME = "config.toml"
STATE_FILENAME = "state.json"
API_SESSION_FILENAME = "api-session.json"
ENV_PREFIX = "OPERATOR_"
ENV_SEPARATOR = "__"
DEFAULT_COLLECTION = "devops_kanban"


def default_user_config_path() -> Path:
    return Path.home() / ".config" / "operator" / CONFIG_FILENAME


def _default_agents_section() -> Dict[str, Any]:
    return {
        "max_parallel": 5,
        "cores_reserved": 1,
        "poll_interval_secs": 5.0,
        "silence_threshold": 30,
        "step_timeout": 1800,
        "generation_timeout_secs": 300,
    }


def _default_queue_section() -> Dict[str, Any]:
    return {
        "auto_assign": True,
        "poll_interval_ms": 1000,
    }


def _default_paths_section() -> Dict[str, Any]:
    return {
        "tickets": TICKETS_DIRNAME,
        "projects": ".",
        "worktrees": "~/.operator/worktrees",
    }


def _default_launch_section() -> Dict[str, Any]:
    return {
        "default_provider": "claude",
        "default_model": "sonnet",
        "confirm_autonomous": True,
        "docker": {
            "enabled": False,
            "image": "",
            "mount_path": "/workspace",
            "env_vars": [],
            "extra_args": [],
        },
        "yolo": {"enabled": False},
    }


def _default_git_section() -> Dict[str, Any]:
    return {
        "use_worktrees": False,
        "base_branch": "main",
        "binary": "git",
    }


def _default_tmux_section() -> Dict[str, Any]:
    return {
        "binary": "tmux",
        "session_prefix": "op-",
        "min_version": "2.1",
    }


def _default_notifications_section() -> Dict[str, Any]:
    return {
        "enabled": True,
        "os": {"enabled": True, "sound": False, "events": []},
        "webhooks": [],
    }


def _default_api_section() -> Dict[str, Any]:
    return {
        "host": "127.0.0.1",
        "port": 7008,
        "cors_origins": [],
    }


def _default_logging_section() -> Dict[str, Any]:
    return {
        "level": "INFO",
        "to_file": True,
        "max_bytes": 10 * 1024 * 1024,
        "backup_count": 3,
    }


def _default_templates_section() -> Dict[str, Any]:
    return {"collection": DEFAULT_COLLECTION}


def _default_llm_tools_section() -> Dict[str, Any]:
    return {"enabled": []}


def default_config_data() -> Dict[str, Any]:
    return {
        "agents": _default_agents_section(),
        "queue": _default_queue_section(),
        "paths": _default_paths_section(),
        "launch": _default_launch_section(),
        "git": _default_git_section(),
        "tmux": _default_tmux_section(),
        "notifications": _default_notifications_section(),
        "api": _default_api_section(),
        "logging": _default_logging_section(),
        "templates": _default_templates_section(),
        "llm_tools": _default_llm_tools_section(),
        "projects": {},
    }


@dataclasses.dataclass(frozen=True)
class AgentsConfig:
    max_parallel: int
    cores_reserved: int
    poll_interval_secs: float
    silence_threshold: int
    step_timeout: int
    generation_timeout_secs: int


@dataclasses.dataclass(frozen=True)
class QueueConfig:
    auto_assign: bool
    poll_interval_ms: int


@dataclasses.dataclass(frozen=True)
class PathsConfig:
    tickets: str
    projects: str
    worktrees: str


@dataclasses.dataclass(frozen=True)
class DockerConfig:
    enabled: bool
    image: str
    mount_path: str
    env_vars: Tuple[str, ...]
    extra_args: Tuple[str, ...]


@dataclasses.dataclass(frozen=True)
class LaunchConfig:
    default_provider: str
    default_model: str
    confirm_autonomous: bool
    docker: DockerConfig
    yolo_enabled: bool


@dataclasses.dataclass(frozen=True)
class GitConfig:
    use_worktrees: bool
    base_branch: str
    binary: str


@dataclasses.dataclass(frozen=True)
class TmuxConfig:
    binary: str
    session_prefix: str
    min_version: str


@dataclasses.dataclass(frozen=True)
class OsNotificationConfig:
    enabled: bool
    sound: bool
    events: Tuple[str, ...]


@dataclasses.dataclass(frozen=True)
class WebhookConfig:
    name: str
    url: str
    enabled: bool
    events: Tuple[str, ...]
    auth_type: Optional[str] = None
    token_env: Optional[str] = None
    username: Optional[str] = None
    password_env: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class NotificationsConfig:
    enabled: bool
    os: OsNotificationConfig
    webhooks: Tuple[WebhookConfig, ...]


@dataclasses.dataclass(frozen=True)
class ApiConfig:
    host: str
    port: int
    cors_origins: Tuple[str, ...]


@dataclasses.dataclass(frozen=True)
class LogConfig:
    level: str
    to_file: bool
    max_bytes: int
    backup_count: int


@dataclasses.dataclass(frozen=True)
class ProjectConfig:
    collection: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class OperatorConfig:
    workspace: Path
    agents: AgentsConfig
    queue: QueueConfig
    paths: PathsConfig
    launch: LaunchConfig
    git: GitConfig
    tmux: TmuxConfig
    notifications: NotificationsConfig
    api: ApiConfig
    logging: LogConfig
    collection: str
    enabled_tools: Tuple[str, ...]
    projects: Dict[str, ProjectConfig]
    sources: Tuple[Path, ...] = ()

    def _resolve(self, raw: str) -> Path:
        path = Path(raw).expanduser()
        if path.is_absolute():
            return path
        return self.workspace / path

    @property
    def tickets_path(self) -> Path:
        return self._resolve(self.paths.tickets)

    @property
    def projects_path(self) -> Path:
        return self._resolve(self.paths.projects)

    @property
    def worktrees_path(self) -> Path:
        return self._resolve(self.paths.worktrees)

    @property
    def operator_path(self) -> Path:
        return self.tickets_path / OPERATOR_DIRNAME

    @property
    def state_path(self) -> Path:
        return self.operator_path / STATE_FILENAME

    @property
    def api_session_path(self) -> Path:
        return self.operator_path / API_SESSION_FILENAME

    @property
    def logs_path(self) -> Path:
        return self.operator_path / "logs"

    @property
    def prompts_path(self) -> Path:
        return self.operator_path / "prompts"

    @property
    def commands_path(self) -> Path:
        return self.operator_path / "commands"

    @property
    def sessions_path(self) -> Path:
        return self.operator_path / "sessions"

    @property
    def templates_path(self) -> Path:
        return self.operator_path / "templates"

    @property
    def issuetypes_path(self) -> Path:
        return self.operator_path / "issuetypes"

    def project_path(self, project: str) -> Path:
        return self.projects_path / project

    def collection_for(self, project: Optional[str]) -> str:
        if project:
            override = self.projects.get(project)
            if override is not None and override.collection:
                return override.collection
        return self.collection

    def effective_max_agents(self, cpu_count: Optional[int] = None) -> int:
        cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
        core_based_max = max(cpus - self.agents.cores_reserved, 0)
        return max(1, min(self.agents.max_parallel, core_based_max))


def _merge_defaults(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = cast(Dict[str, Any], json.loads(json.dumps(base)))
    for key, value in overrides.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_toml_dict(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    return data


def _coerce_env_value(raw: str) -> Any:
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    if value is None or isinstance(value, dict):
        return raw
    return value


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    """Turn ``OPERATOR_SECTION__KEY=value`` pairs into a nested mapping."""
    overrides: Dict[str, Any] = {}
    for name in sorted(env):
        if not name.startswith(ENV_PREFIX):
            continue
        parts = [
            part.lower() for part in name[len(ENV_PREFIX) :].split(ENV_SEPARATOR)
        ]
        if len(parts) < 2 or not all(parts):
            continue
        cursor = overrides
        for part in parts[:-1]:
            nested = cursor.get(part)
            if not isinstance(nested, dict):
                nested = {}
                cursor[part] = nested
            cursor = nested
        cursor[parts[-1]] = _coerce_env_value(env[name])
    return overrides


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a table")
    return value


def _get_int(cfg: Dict[str, Any], key: str, scope: str) -> int:
    value = cfg.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{scope}.{key} must be an integer")
    if value < 0:
        raise ConfigError(f"{scope}.{key} must be >= 0")
    return value


def _get_float(cfg: Dict[str, Any], key: str, scope: str) -> float:
    value = cfg.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{scope}.{key} must be a number")
    return float(value)


def _get_bool(cfg: Dict[str, Any], key: str, scope: str) -> bool:
    value = cfg.get(key)
    if not isinstance(value, bool):
        raise ConfigError(f"{scope}.{key} must be boolean")
    return value


def _get_str(cfg: Dict[str, Any], key: str, scope: str) -> str:
    value = cfg.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise ConfigError(f"{scope}.{key} must be a string")
    return value


def _get_str_list(cfg: Dict[str, Any], key: str, scope: str) -> Tuple[str, ...]:
    value = cfg.get(key, [])
    if isinstance(value, str):
        value = [item.strip() for item in value.split(",") if item.strip()]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{scope}.{key} must be a list of strings")
    return tuple(value)


def _optional_str(cfg: Dict[str, Any], key: str, scope: str) -> Optional[str]:
    if cfg.get(key) in (None, ""):
        return None
    return _get_str(cfg, key, scope)


def _parse_webhooks(raw: Any) -> Tuple[WebhookConfig, ...]:
    if not isinstance(raw, list):
        raise ConfigError("notifications.webhooks must be an array of tables")
    webhooks: List[WebhookConfig] = []
    for index, entry in enumerate(raw):
        scope = f"notifications.webhooks[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{scope} must be a table")
        auth_type = _optional_str(entry, "auth_type", scope)
        if auth_type is not None and auth_type not in ("bearer", "basic"):
            raise ConfigError(f"{scope}.auth_type must be 'bearer' or 'basic'")
        webhooks.append(
            WebhookConfig(
                name=_optional_str(entry, "name", scope) or f"webhook-{index + 1}",
                url=_optional_str(entry, "url", scope) or "",
                enabled=_get_bool({"enabled": entry.get("enabled", True)}, "enabled", scope),
                events=_get_str_list(entry, "events", scope),
                auth_type=auth_type,
                token_env=_optional_str(entry, "token_env", scope),
                username=_optional_str(entry, "username", scope),
                password_env=_optional_str(entry, "password_env", scope),
            )
        )
    return tuple(webhooks)


def _parse_projects(raw: Any) -> Dict[str, ProjectConfig]:
    if not isinstance(raw, dict):
        raise ConfigError("projects must be a table")
    projects: Dict[str, ProjectConfig] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"projects.{name} must be a table")
        projects[str(name)] = ProjectConfig(
            collection=_optional_str(entry, "collection", f"projects.{name}")
        )
    return projects


def parse_config_data(
    data: Dict[str, Any], workspace: Path, *, sources: Tuple[Path, ...] = ()
) -> OperatorConfig:
    agents = _section(data, "agents")
    queue = _section(data, "queue")
    paths = _section(data, "paths")
    launch = _section(data, "launch")
    docker = _section(launch, "docker")
    yolo = _section(launch, "yolo")
    git = _section(data, "git")
    tmux = _section(data, "tmux")
    notifications = _section(data, "notifications")
    os_cfg = _section(notifications, "os")
    api = _section(data, "api")
    log_cfg = _section(data, "logging")
    templates = _section(data, "templates")
    llm_tools = _section(data, "llm_tools")

    max_parallel = _get_int(agents, "max_parallel", "agents")
    if max_parallel < 1:
        raise ConfigError("agents.max_parallel must be >= 1")

    return OperatorConfig(
        workspace=workspace,
        agents=AgentsConfig(
            max_parallel=max_parallel,
            cores_reserved=_get_int(agents, "cores_reserved", "agents"),
            poll_interval_secs=_get_float(agents, "poll_interval_secs", "agents"),
            silence_threshold=_get_int(agents, "silence_threshold", "agents"),
            step_timeout=_get_int(agents, "step_timeout", "agents"),
            generation_timeout_secs=_get_int(
                agents, "generation_timeout_secs", "agents"
            ),
        ),
        queue=QueueConfig(
            auto_assign=_get_bool(queue, "auto_assign", "queue"),
            poll_interval_ms=_get_int(queue, "poll_interval_ms", "queue"),
        ),
        paths=PathsConfig(
            tickets=_get_str(paths, "tickets", "paths"),
            projects=_get_str(paths, "projects", "paths"),
            worktrees=_get_str(paths, "worktrees", "paths"),
        ),
        launch=LaunchConfig(
            default_provider=_get_str(launch, "default_provider", "launch"),
            default_model=_get_str(launch, "default_model", "launch"),
            confirm_autonomous=_get_bool(launch, "confirm_autonomous", "launch"),
            docker=DockerConfig(
                enabled=_get_bool(docker, "enabled", "launch.docker"),
                image=_get_str(docker, "image", "launch.docker"),
                mount_path=_get_str(docker, "mount_path", "launch.docker"),
                env_vars=_get_str_list(docker, "env_vars", "launch.docker"),
                extra_args=_get_str_list(docker, "extra_args", "launch.docker"),
            ),
            yolo_enabled=_get_bool(yolo, "enabled", "launch.yolo"),
        ),
        git=GitConfig(
            use_worktrees=_get_bool(git, "use_worktrees", "git"),
            base_branch=_get_str(git, "base_branch", "git"),
            binary=_get_str(git, "binary", "git"),
        ),
        tmux=TmuxConfig(
            binary=_get_str(tmux, "binary", "tmux"),
            session_prefix=_get_str(tmux, "session_prefix", "tmux"),
            min_version=_get_str(tmux, "min_version", "tmux"),
        ),
        notifications=NotificationsConfig(
            enabled=_get_bool(notifications, "enabled", "notifications"),
            os=OsNotificationConfig(
                enabled=_get_bool(os_cfg, "enabled", "notifications.os"),
                sound=_get_bool(os_cfg, "sound", "notifications.os"),
                events=_get_str_list(os_cfg, "events", "notifications.os"),
            ),
            webhooks=_parse_webhooks(notifications.get("webhooks", [])),
        ),
        api=ApiConfig(
            host=_get_str(api, "host", "api"),
            port=_get_int(api, "port", "api"),
            cors_origins=_get_str_list(api, "cors_origins", "api"),
        ),
        logging=LogConfig(
            level=_get_str(log_cfg, "level", "logging"),
            to_file=_get_bool(log_cfg, "to_file", "logging"),
            max_bytes=_get_int(log_cfg, "max_bytes", "logging"),
            backup_count=_get_int(log_cfg, "backup_count", "logging"),
        ),
        collection=_get_str(templates, "collection", "templates"),
        enabled_tools=_get_str_list(llm_tools, "enabled", "llm_tools"),
        projects=_parse_projects(data.get("projects", {})),
        sources=sources,
    )


def resolve_config_data(
    workspace: Path,
    *,
    config_path: Optional[Path] = None,
    user_config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Tuple[Dict[str, Any], Tuple[Path, ...]]:
    """Apply every overlay on top of the defaults, lowest precedence first."""
    if env is None:
        load_dotenv(workspace / ".env", override=False)
        env = os.environ
    if user_config_path is None:
        user_config_path = default_user_config_path()

    data = default_config_data()
    tickets_raw = _env_overrides(env).get("paths", {}).get("tickets", TICKETS_DIRNAME)
    tickets_dir = Path(str(tickets_raw)).expanduser()
    if not tickets_dir.is_absolute():
        tickets_dir = workspace / tickets_dir
    layers: List[Path] = [
        tickets_dir / OPERATOR_DIRNAME / CONFIG_FILENAME,
        user_config_path,
    ]
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        layers.append(config_path)

    sources: List[Path] = []
    for layer in layers:
        overrides = _load_toml_dict(layer)
        if overrides:
            data = _merge_defaults(data, overrides)
            sources.append(layer)
    env_layer = _env_overrides(env)
    if env_layer:
        data = _merge_defaults(data, env_layer)
    return data, tuple(sources)


def load_config(
    workspace: Optional[Path] = None,
    *,
    config_path: Optional[Path] = None,
    user_config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> OperatorConfig:
    root = (workspace or Path.cwd()).resolve()
    data, sources = resolve_config_data(
        root,
        config_path=config_path,
        user_config_path=user_config_path,
        env=env,
    )
    config = parse_config_data(data, root, sources=sources)
    logger.debug("Loaded config from %s", [str(p) for p in sources] or "defaults")
    return config


def ensure_operator_dirs(config: OperatorConfig) -> None:
    for path in (
        config.tickets_path / "queue",
        config.tickets_path / "in-progress",
        config.tickets_path / "completed",
        config.operator_path,
        config.prompts_path,
        config.commands_path,
        config.sessions_path,
        config.templates_path,
        config.issuetypes_path,
    ):
        path.mkdir(parents=True, exist_ok=True)


__all__ = [
    "ApiConfig",
    "ConfigError",
    "DockerConfig",
    "LogConfig",
    "NotificationsConfig",
    "OperatorConfig",
    "WebhookConfig",
    "default_config_data",
    "ensure_operator_dirs",
    "load_config",
    "parse_config_data",
]
