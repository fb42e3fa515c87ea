import pytest
from ldap3 import MOCK_SYNC, Connection, Server

from config import AuthConfig
from directory import DirectoryError, LdapDirectory

BASE_DN = "dc=htl,dc=at"
SERVICE_DN = "cn=wechselplan,ou=services,dc=htl,dc=at"
USER_DN = "cn=Lena Zach,ou=people,dc=htl,dc=at"


@pytest.fixture
def server():
    server = Server("fake_ad")
    seed = Connection(server, user=SERVICE_DN, password="service", client_strategy=MOCK_SYNC)
    seed.strategy.add_entry(BASE_DN, {"dc": "htl"})
    seed.strategy.add_entry(SERVICE_DN, {"cn": "wechselplan", "userPassword": "service"})
    seed.strategy.add_entry(USER_DN, {
        "cn": "Lena Zach",
        "sAMAccountName": "lzach",
        "displayName": "Lena Zach",
        "mail": "lena.zach@htl.at",
        "userPassword": "geheim",
    })
    seed.strategy.add_entry("cn=wp-students,ou=groups,dc=htl,dc=at", {"cn": "wp-students", "member": [USER_DN]})
    seed.strategy.add_entry("cn=wp-admins,ou=groups,dc=htl,dc=at", {"cn": "wp-admins", "member": [SERVICE_DN]})
    return server


def make_directory(server, bind_password="service"):
    config = AuthConfig(
        ldap_url="ldap://fake_ad",
        ldap_base_dn=BASE_DN,
        ldap_bind_dn=SERVICE_DN,
        ldap_bind_password=bind_password,
    )
    return LdapDirectory(config, server=server, client_strategy=MOCK_SYNC)


def test_authenticate(server):
    user = make_directory(server).authenticate("lzach", "geheim")

    assert user.username == "lzach"
    assert user.display_name == "Lena Zach"
    assert user.mail == "lena.zach@htl.at"
    assert "wp-students" in user.groups
    assert "cn=wp-students,ou=groups,dc=htl,dc=at" in user.groups
    assert "wp-admins" not in user.groups


def test_wrong_password(server):
    assert make_directory(server).authenticate("lzach", "falsch") is None


def test_unknown_user(server):
    assert make_directory(server).authenticate("niemand", "geheim") is None


def test_empty_password(server):
    assert make_directory(server).authenticate("lzach", "") is None


def test_service_bind_failure(server):
    with pytest.raises(DirectoryError):
        make_directory(server, bind_password="falsch").authenticate("lzach", "geheim")
