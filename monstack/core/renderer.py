"""
Release rendering

Turns the stack templates, public variables and secrets into the files of
one release. Rendering happens in memory; nothing touches the target here.
"""

import hashlib
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, UndefinedError

from monstack.constants import (
    COMPOSE_FILE,
    DEFAULT_STACK_USER,
    RENDERED_ENV_FILE,
    RENDERED_ENV_PERMISSIONS,
    RENDERED_FILE_PERMISSIONS,
)
from monstack.exceptions import ConfigurationError, RenderError

ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# ${VAR} or ${VAR:?msg} / ${VAR?msg}; ${VAR:-default} / ${VAR-default} carry their own fallback
COMPOSE_REFERENCE = re.compile(r"(?<!\$)\$\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-?+])[^}]*)?\}")
MAX_VARIABLE_PASSES = 10
ENV_MAPPING_VAR = "monitoring_env"


@dataclass
class RenderedFile:
    """One file of a release."""

    path: str
    content: bytes
    mode: int = RENDERED_FILE_PERMISSIONS

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


@dataclass
class RenderedRelease:
    """Everything a release contains, keyed by relative path."""

    files: Dict[str, RenderedFile] = field(default_factory=dict)
    services: List[str] = field(default_factory=list)

    def add(self, path: str, content: bytes, mode: int = RENDERED_FILE_PERMISSIONS) -> None:
        self.files[path] = RenderedFile(path=path, content=content, mode=mode)

    @property
    def checksums(self) -> Dict[str, str]:
        return {path: f.sha256 for path, f in sorted(self.files.items())}


def load_public_vars(path: Path) -> Dict[str, Any]:
    """
    Load the plaintext variables document.

    Falls back to '<path>.example' when the real file has not been created.
    """
    path = Path(path)
    if not path.exists():
        example = path.with_name(path.name + ".example")
        if not example.exists():
            return {}
        path = example
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}", context=str(e))
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping")
    return data


def stack_user(public_vars: Dict[str, Any]) -> str:
    return str(public_vars.get("monitoring_stack_user") or DEFAULT_STACK_USER)


def stack_group(public_vars: Dict[str, Any]) -> str:
    return str(public_vars.get("monitoring_stack_group") or stack_user(public_vars))


def stack_groups(public_vars: Dict[str, Any]) -> List[str]:
    """Supplementary groups granted to the service account (e.g. docker)."""
    groups = public_vars.get("monitoring_stack_groups") or []
    if isinstance(groups, str):
        groups = [groups]
    return [str(g) for g in groups]


def escape_env_value(value: str) -> str:
    """
    Quote a value for a compose env file.

    Single quotes keep '$' literal, so bcrypt hashes survive interpolation.
    """
    if value == "":
        return ""
    if re.fullmatch(r"[A-Za-z0-9_./:@+,=-]+", value):
        return value
    if "'" not in value:
        return f"'{value}'"
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("$", "$$")
    return f'"{escaped}"'


def format_env_file(env: Dict[str, str]) -> str:
    lines = [f"{key}={escape_env_value(value)}" for key, value in sorted(env.items())]
    return "\n".join(lines) + ("\n" if lines else "")


def compose_references(compose_text: str) -> List[str]:
    """Variables the compose file needs from the environment."""
    needed = []
    for match in COMPOSE_REFERENCE.finditer(compose_text):
        operator = match.group(2)
        if operator and operator.lstrip(":") in ("-", "+"):
            continue
        if match.group(1) not in needed:
            needed.append(match.group(1))
    return needed


class ReleaseRenderer:
    """
    Renders templates for one release.

    Provides:
    - Variable context built from public vars and secrets
    - Template rendering with unresolved references as errors
    - Env file materialization
    - Compose reference validation
    """

    def __init__(self, templates_dir: Path, env_mapping: str = ENV_MAPPING_VAR):
        self.templates_dir = Path(templates_dir)
        self.env_mapping = env_mapping
        self.environment = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def build_context(
        self, public_vars: Dict[str, Any], secrets: Dict[str, str]
    ) -> Dict[str, Any]:
        """
        Merge secrets and public vars, resolving templated string values.

        Public variables may reference secrets or each other, e.g.
        grafana_admin_password: "{{ vault_grafana_admin_password }}".

        Raises:
            RenderError: If a reference cannot be resolved
        """
        context: Dict[str, Any] = dict(secrets)
        context.update(public_vars)

        for _ in range(MAX_VARIABLE_PASSES):
            changed = False
            for key in public_vars:
                value = context[key]
                if isinstance(value, str) and "{{" in value:
                    resolved = self._render_string(value, context, f"variable '{key}'", strict=False)
                    if resolved != value:
                        context[key] = resolved
                        changed = True
            if not changed:
                break

        for key in public_vars:
            value = context[key]
            if isinstance(value, str) and "{{" in value:
                self._render_string(value, context, f"variable '{key}'")
        return context

    def _render_string(self, source: str, context: Dict[str, Any], label: str, strict: bool = True) -> str:
        try:
            return self.environment.from_string(source).render(context)
        except UndefinedError as e:
            if not strict:
                return source
            raise RenderError(f"Unresolved reference in {label}", context=str(e))
        except TemplateError as e:
            raise RenderError(f"Invalid template in {label}", context=str(e))

    def render_env(self, context: Dict[str, Any]) -> Dict[str, str]:
        """Render the env mapping declared in public vars."""
        mapping = context.get(self.env_mapping) or {}
        if not isinstance(mapping, dict):
            raise RenderError(f"'{self.env_mapping}' must be a mapping of KEY: value")

        env = {}
        for key, value in mapping.items():
            key = str(key)
            if not ENV_KEY_PATTERN.match(key):
                raise RenderError(f"Invalid environment variable name '{key}'")
            text = "" if value is None else str(value)
            rendered = self._render_string(text, context, f"environment variable '{key}'")
            if "\n" in rendered:
                raise RenderError(f"Environment variable '{key}' renders to multiple lines")
            env[key] = rendered
        return env

    def render(self, context: Dict[str, Any]) -> RenderedRelease:
        """
        Render every file under the templates directory.

        Raises:
            RenderError: On unresolved references or a broken compose file
        """
        if not self.templates_dir.is_dir():
            raise RenderError(
                f"Templates directory does not exist: {self.templates_dir}",
                context="Create templates/ with at least docker-compose.yml.j2",
            )

        release = RenderedRelease()
        for source in sorted(p for p in self.templates_dir.rglob("*") if p.is_file()):
            relative = source.relative_to(self.templates_dir).as_posix()
            if source.suffix == ".j2":
                target = relative[: -len(".j2")]
                try:
                    template = self.environment.get_template(relative)
                    content = template.render(context).encode("utf-8")
                except UndefinedError as e:
                    raise RenderError(f"Unresolved reference in template {relative}", context=str(e))
                except TemplateError as e:
                    raise RenderError(f"Invalid template {relative}", context=str(e))
            else:
                target = relative
                content = source.read_bytes()
            release.add(target, content)

        env = self.render_env(context)
        release.add(RENDERED_ENV_FILE, format_env_file(env).encode("utf-8"), RENDERED_ENV_PERMISSIONS)

        self._check_compose(release, env)
        return release

    def _check_compose(self, release: RenderedRelease, env: Dict[str, str]) -> None:
        compose = release.files.get(COMPOSE_FILE)
        if compose is None:
            raise RenderError(f"Templates do not produce {COMPOSE_FILE}")

        text = compose.content.decode("utf-8")
        try:
            document = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise RenderError(f"Rendered {COMPOSE_FILE} is not valid YAML", context=str(e))

        services = document.get("services") if isinstance(document, dict) else None
        if not isinstance(services, dict) or not services:
            raise RenderError(f"Rendered {COMPOSE_FILE} declares no services")
        release.services = list(services)

        missing = [name for name in compose_references(text) if name not in env]
        if missing:
            raise RenderError(
                f"{COMPOSE_FILE} references undefined environment variables: {', '.join(missing)}",
                context=f"Add them to '{self.env_mapping}' in vars.yml",
            )


def diff_checksums(old: Dict[str, str], new: Dict[str, str]) -> Dict[str, str]:
    """Per-file change summary between two manifests."""
    changes = {}
    for path in sorted(set(old) | set(new)):
        if path not in old:
            changes[path] = "added"
        elif path not in new:
            changes[path] = "removed"
        elif old[path] != new[path]:
            changes[path] = "changed"
    return changes
