"""Inventory parsing."""

import textwrap

import pytest

from monstack.core.inventory import Inventory, InventoryError


def load(tmp_path, text):
    path = tmp_path / "hosts.ini"
    path.write_text(textwrap.dedent(text))
    return Inventory.load(path)


def test_host_with_group_vars(tmp_path):
    inventory = load(
        tmp_path,
        """\
        # Monitoring servers
        [monitoring_hosts]
        monitoring ansible_host=203.0.113.10 ansible_user=deploy

        [monitoring_hosts:vars]
        ansible_port=2222
        ansible_ssh_private_key_file=~/.ssh/monitoring
        """,
    )

    target = inventory.select("monitoring_hosts")

    assert target.name == "monitoring"
    assert target.address == "203.0.113.10"
    assert target.user == "deploy"
    assert target.port == 2222
    assert target.key_path == "~/.ssh/monitoring"
    assert target.connection_string == "deploy@203.0.113.10"
    assert not target.is_local


def test_host_attributes_override_group_vars(tmp_path):
    inventory = load(
        tmp_path,
        """\
        [monitoring_hosts]
        a ansible_host=10.0.0.1 ansible_port=22

        [monitoring_hosts:vars]
        ansible_port=2222
        """,
    )
    assert inventory.select("monitoring_hosts").port == 22


def test_commented_host_is_unconfigured(tmp_path):
    inventory = load(
        tmp_path,
        """\
        [monitoring_hosts]
        # monitoring ansible_host=203.0.113.10
        """,
    )
    assert inventory.configured_targets("monitoring_hosts") == []
    with pytest.raises(InventoryError, match="No configured hosts"):
        inventory.select("monitoring_hosts")


def test_host_without_address_is_unconfigured(tmp_path):
    inventory = load(tmp_path, "[monitoring_hosts]\nmonitoring ansible_user=deploy\n")
    assert inventory.targets("monitoring_hosts")[0].address == ""
    assert inventory.configured_targets("monitoring_hosts") == []


def test_local_connection(tmp_path):
    inventory = load(tmp_path, "[monitoring_hosts]\nlocal ansible_connection=local\n")
    target = inventory.select("monitoring_hosts")
    assert target.is_local
    assert target.address == "localhost"


def test_several_hosts_need_a_name(tmp_path):
    inventory = load(
        tmp_path,
        """\
        [monitoring_hosts]
        one ansible_host=10.0.0.1
        two ansible_host=10.0.0.2
        """,
    )
    with pytest.raises(InventoryError, match="--target"):
        inventory.select("monitoring_hosts")
    assert inventory.select("monitoring_hosts", "two").address == "10.0.0.2"
    with pytest.raises(InventoryError, match="not found"):
        inventory.select("monitoring_hosts", "three")


def test_host_in_two_groups_rejected(tmp_path):
    with pytest.raises(InventoryError, match="exactly one group"):
        load(
            tmp_path,
            """\
            [monitoring_hosts]
            shared ansible_host=10.0.0.1

            [logging_hosts]
            shared ansible_host=10.0.0.1
            """,
        )


def test_children_sections_ignored(tmp_path):
    inventory = load(
        tmp_path,
        """\
        [monitoring_hosts]
        m ansible_host=10.0.0.1

        [all:children]
        monitoring_hosts
        """,
    )
    assert [t.name for t in inventory.targets("monitoring_hosts")] == ["m"]


@pytest.mark.parametrize(
    "text, message",
    [
        ("[monitoring_hosts]\nm ansible_host=10.0.0.1 ansible_connection=winrm\n", "unsupported"),
        ("[monitoring_hosts]\nm ansible_host=10.0.0.1 ansible_port=ssh\n", "must be a number"),
        ("[monitoring_hosts:vars]\nansible_port\n", "key=value"),
        ("[monitoring_hosts]\nm ansible_host='10.0.0.1\n", "hosts.ini:2"),
    ],
)
def test_malformed(tmp_path, text, message):
    with pytest.raises(InventoryError, match=message):
        load(tmp_path, text).select("monitoring_hosts")


def test_missing_file(tmp_path):
    with pytest.raises(InventoryError, match="does not exist"):
        Inventory.load(tmp_path / "nope.ini")
