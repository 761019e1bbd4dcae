# type: ignore
import logging
import pytest
from loguru import logger
from ldap_class.exceptions import ConfigurationError
from ldap_class.models.group import AdGroup, PosixGroup
from ldap_class.models.user import AdUser, PosixUser
from ldap_class.schema import EntityKind, SchemaRegistry, SchemaVariant
from ldap_class.session import DirectorySession
from fake_directory import AD_BASE, POSIX_BASE, FakeDirectory, ad_session, posix_session
from _pytest.logging import caplog as _caplog  # noqa


@pytest.fixture
def caplog(_caplog):  # noqa
    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message} {extra}")
    yield _caplog
    logger.remove(handler_id)


class Team(PosixGroup):
    """A model subclass registered in place of the built-in one."""


class TestDirectorySession:
    def setup_method(self):
        self.session = posix_session()

    def test_models(self) -> None:
        assert self.session.model(EntityKind.GROUP, SchemaVariant.POSIX) is PosixGroup
        assert self.session.model("user", "posix") is PosixUser
        assert self.session.model(EntityKind.GROUP, SchemaVariant.AD) is AdGroup
        assert self.session.model(EntityKind.USER, SchemaVariant.AD) is AdUser

    def test_unknown_model(self) -> None:
        with pytest.raises(ConfigurationError):
            self.session.model("printer", "posix")

    def test_custom_model(self) -> None:
        session = DirectorySession(
            FakeDirectory.posix(),
            SchemaRegistry.default({"posix": POSIX_BASE}),
            models={(EntityKind.GROUP, SchemaVariant.POSIX): Team},
        )
        team = session.posix_group(cn="eng", gidNumber=1000).create()
        assert isinstance(team, Team)
        assert session.posix_user(uid="alice").group_model is PosixGroup

    def test_factories(self) -> None:
        group = self.session.posix_group(cn="eng")
        user = self.session.posix_user(uid="alice")
        assert isinstance(group, PosixGroup)
        assert isinstance(user, PosixUser)
        assert group.session is self.session
        assert not group.is_bound

    def test_factory_without_schema(self) -> None:
        with pytest.raises(ConfigurationError):
            self.session.ad_group(cn="eng")

    def test_ad_factories(self) -> None:
        session = ad_session()
        assert isinstance(session.ad_group(cn="eng"), AdGroup)
        assert isinstance(session.ad_user(sAMAccountName="alice"), AdUser)
        assert session.registry.resolve(EntityKind.USER, SchemaVariant.AD).base_dn == AD_BASE

    def test_next_free_id(self) -> None:
        assert self.session.next_free_id(EntityKind.GROUP) == 1000
        self.session.posix_group(cn="eng", gidNumber=1000).create()
        self.session.posix_group(cn="hr", gidNumber=1001).create()
        self.session.posix_group(cn="ops", gidNumber=1003).create()
        assert self.session.next_free_id(EntityKind.GROUP) == 1002
        assert self.session.next_free_id(EntityKind.GROUP, 1003) == 1004
        assert self.session.next_free_id("user", 2000) == 2000

    def test_next_free_id_skips_reserved_gid(self) -> None:
        assert self.session.next_free_id(EntityKind.GROUP, 999999) == 1000000

    def test_next_free_id_bad_value(self, caplog) -> None:
        self.session.transport.add(
            f"cn=odd,ou=Group,{POSIX_BASE}",
            {"objectClass": ["top", "posixGroup"], "cn": "odd", "gidNumber": "abc"},
        )
        with caplog.at_level(logging.WARNING):
            assert self.session.next_free_id(EntityKind.GROUP) == 1000
        assert "Found an unexpected gidNumber: 'abc'" in caplog.text

    def test_next_free_id_without_posix_schema(self) -> None:
        with pytest.raises(ConfigurationError):
            ad_session().next_free_id(EntityKind.USER)

    def test_close(self) -> None:
        eng = self.session.posix_group(cn="eng", gidNumber=1000).create()
        eng.primary_members()
        assert eng.relation_cache
        self.session.close()
        assert eng.relation_cache == {}
        assert self.session.transport.unbound
