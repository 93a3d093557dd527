"""Template rendering."""

import pytest
import yaml

from monstack.core.renderer import (
    ReleaseRenderer,
    compose_references,
    diff_checksums,
    escape_env_value,
    format_env_file,
    load_public_vars,
    stack_groups,
    stack_user,
)
from monstack.exceptions import RenderError

COMPOSE = """\
services:
  grafana:
    image: grafana/grafana:{{ version }}
    environment:
      PASSWORD: ${GRAFANA_PASSWORD}
"""


@pytest.fixture
def templates(tmp_path):
    path = tmp_path / "templates"
    path.mkdir()
    (path / "docker-compose.yml.j2").write_text(COMPOSE)
    return path


def context_for(renderer, **public):
    public.setdefault("version", "11.2.0")
    public.setdefault("monitoring_env", {"GRAFANA_PASSWORD": "{{ vault_grafana_admin_password }}"})
    return renderer.build_context(public, {"vault_grafana_admin_password": "s3cret"})


class TestContext:
    def test_variables_resolve_through_each_other(self, templates):
        renderer = ReleaseRenderer(templates)
        context = renderer.build_context(
            {"a": "{{ b }}-a", "b": "{{ vault_x }}-b"},
            {"vault_x": "x"},
        )
        assert context["a"] == "x-b-a"
        assert context["b"] == "x-b"

    def test_unresolved_variable(self, templates):
        with pytest.raises(RenderError, match="variable 'a'"):
            ReleaseRenderer(templates).build_context({"a": "{{ missing }}"}, {})

    def test_secret_values_are_not_templated(self, templates):
        context = ReleaseRenderer(templates).build_context({}, {"vault_x": "{{ literally }}"})
        assert context["vault_x"] == "{{ literally }}"


class TestRender:
    def test_renders_and_copies(self, templates):
        (templates / "static.conf").write_bytes(b"{{ untouched }}\x00")
        (templates / "sub").mkdir()
        (templates / "sub" / "app.ini.j2").write_text("version={{ version }}\n")

        renderer = ReleaseRenderer(templates)
        release = renderer.render(context_for(renderer))

        assert set(release.files) == {"docker-compose.yml", "static.conf", "sub/app.ini", ".env"}
        assert release.files["static.conf"].content == b"{{ untouched }}\x00"
        assert release.files["sub/app.ini"].content == b"version=11.2.0\n"
        assert release.files[".env"].content == b"GRAFANA_PASSWORD=s3cret\n"
        assert release.files[".env"].mode == 0o600
        assert release.services == ["grafana"]

    def test_undefined_reference_in_template(self, templates):
        (templates / "broken.conf.j2").write_text("x={{ not_defined }}\n")
        renderer = ReleaseRenderer(templates)
        with pytest.raises(RenderError, match="broken.conf.j2"):
            renderer.render(context_for(renderer))

    def test_compose_reference_missing_from_env(self, templates):
        renderer = ReleaseRenderer(templates)
        with pytest.raises(RenderError, match="GRAFANA_PASSWORD"):
            renderer.render(context_for(renderer, monitoring_env={}))

    def test_compose_required(self, tmp_path):
        (tmp_path / "other.txt").write_text("x")
        with pytest.raises(RenderError, match="docker-compose.yml"):
            ReleaseRenderer(tmp_path).render({})

    def test_compose_without_services(self, templates):
        (templates / "docker-compose.yml.j2").write_text("volumes: {}\n")
        with pytest.raises(RenderError, match="no services"):
            ReleaseRenderer(templates).render({})

    def test_multiline_env_value(self, templates):
        renderer = ReleaseRenderer(templates)
        with pytest.raises(RenderError, match="multiple lines"):
            renderer.render(context_for(renderer, monitoring_env={"GRAFANA_PASSWORD": "a\nb"}))

    def test_invalid_env_name(self, templates):
        renderer = ReleaseRenderer(templates)
        with pytest.raises(RenderError, match="Invalid environment variable name"):
            renderer.render(context_for(renderer, monitoring_env={"GRAFANA-PASSWORD": "x"}))

    def test_missing_templates_dir(self, tmp_path):
        with pytest.raises(RenderError, match="does not exist"):
            ReleaseRenderer(tmp_path / "nope").render({})

    def test_same_input_same_checksums(self, templates):
        renderer = ReleaseRenderer(templates)
        first = renderer.render(context_for(renderer)).checksums
        second = renderer.render(context_for(renderer)).checksums
        assert first == second

    def test_alternate_env_mapping(self, templates):
        renderer = ReleaseRenderer(templates, env_mapping="runner_env")
        context = renderer.build_context(
            {"version": "1", "runner_env": {"GRAFANA_PASSWORD": "from-runner"}}, {}
        )
        assert renderer.render(context).files[".env"].content == b"GRAFANA_PASSWORD=from-runner\n"


class TestEnvFile:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("plain", "plain"),
            ("", ""),
            ("https://graylog.example.com/", "https://graylog.example.com/"),
            ("$2a$14$abc", "'$2a$14$abc'"),
            ("has space", "'has space'"),
            ("it's $x", '"it\'s $$x"'),
        ],
    )
    def test_escape(self, value, expected):
        assert escape_env_value(value) == expected

    def test_sorted_lines(self):
        assert format_env_file({"B": "2", "A": "1"}) == "A=1\nB=2\n"
        assert format_env_file({}) == ""


def test_compose_references():
    text = "${A} ${B:-default} ${C?required} ${D:?msg} $${E} ${F-x} ${A}"
    assert compose_references(text) == ["A", "C", "D"]


def test_diff_checksums():
    old = {"a": "1", "b": "2", "c": "3"}
    new = {"a": "1", "b": "20", "d": "4"}
    assert diff_checksums(old, new) == {"b": "changed", "c": "removed", "d": "added"}


class TestPublicVars:
    def test_falls_back_to_example(self, tmp_path):
        (tmp_path / "vars.yml.example").write_text(yaml.safe_dump({"monitoring_stack_user": "mon"}))
        public = load_public_vars(tmp_path / "vars.yml")
        assert stack_user(public) == "mon"

    def test_defaults(self, tmp_path):
        public = load_public_vars(tmp_path / "vars.yml")
        assert public == {}
        assert stack_user(public) == "monitoring"
        assert stack_groups({"monitoring_stack_groups": "docker"}) == ["docker"]
