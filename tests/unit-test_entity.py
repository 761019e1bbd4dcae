# type: ignore
import json
import logging
import pytest
from unittest.mock import MagicMock
from loguru import logger
from ldap_class.exceptions import (
    IntegrityError,
    PlanningError,
    ReconciliationError,
    RollbackError,
    ValidationError,
)
from ldap_class.models.group import PosixGroup
from ldap_class.models.user import PosixUser
from ldap_class.tracker import Change
from ldap_class.utils.filters import eq
from fake_directory import posix_session
from _pytest.logging import caplog as _caplog  # noqa

GROUP_BASE = "ou=Group,dc=example,dc=com"
PEOPLE_BASE = "ou=People,dc=example,dc=com"


@pytest.fixture
def caplog(_caplog):  # noqa
    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message} {extra}")
    yield _caplog
    logger.remove(handler_id)


def seed_group(directory, name, gid, **attributes):
    directory.add(
        f"cn={name},{GROUP_BASE}",
        {"objectClass": ["top", "posixGroup"], "cn": name, "gidNumber": gid, **attributes},
    )
    directory.add(
        f"ou={name},{PEOPLE_BASE}", {"objectClass": ["top", "organizationalUnit"], "ou": name}
    )


class TestEntityAttributes:
    def setup_method(self):
        self.session = posix_session()

    def test_pending_values(self) -> None:
        group = PosixGroup(self.session, cn="eng", gidNumber="1000")
        assert not group.is_bound
        assert group.dn is None
        assert group.gid == 1000
        assert group.get("memberUid") == []
        assert group.pending == {"cn": "eng", "gidNumber": "1000"}

    def test_typed_accessors(self) -> None:
        group = PosixGroup(self.session)
        group.cn = "eng"
        group.description = "Engineering"
        assert group.get("CN") == "eng"
        assert group.description == "Engineering"
        assert "gidNumber" in PosixGroup.typed_attributes()

    def test_clear_pending_value(self) -> None:
        group = PosixGroup(self.session, cn="eng", description="Engineering")
        group.description = None
        assert "description" not in group.pending

    def test_unknown_attribute(self) -> None:
        group = PosixGroup(self.session)
        with pytest.raises(ValidationError):
            group.get("colour")
        with pytest.raises(ValidationError):
            group.set("colour", "blue")

    def test_equality(self) -> None:
        assert PosixGroup(self.session, cn="Eng") == PosixGroup(self.session, cn="eng")
        assert PosixGroup(self.session, cn="eng") != PosixGroup(self.session, cn="hr")
        anonymous = PosixGroup(self.session, description="x")
        assert anonymous == anonymous
        assert anonymous != PosixGroup(self.session, description="x")

    def test_str_and_repr(self) -> None:
        group = PosixGroup(self.session, cn="eng")
        assert str(group) == "eng"
        assert repr(group) == "<PosixGroup cn=eng>"
        assert repr(PosixGroup(self.session)) == "<PosixGroup (no identity)>"


class TestEntityRead:
    def setup_method(self):
        self.session = posix_session()
        self.directory = self.session.transport
        seed_group(self.directory, "eng", 1000, description="Engineering")

    def test_read(self) -> None:
        group = PosixGroup(self.session, cn="eng").read()
        assert group.is_bound
        assert group.dn == f"cn=eng,{GROUP_BASE}"
        assert group.gid == 1000
        assert group.description == "Engineering"
        assert group.changes == {}

    def test_read_by_other_attribute(self) -> None:
        group = PosixGroup(self.session).read("gidNumber", 1000)
        assert group.name == "eng"

    def test_read_not_found(self) -> None:
        assert PosixGroup(self.session, cn="hr").read() is None

    def test_read_without_unique_attribute(self) -> None:
        with pytest.raises(ValidationError):
            PosixGroup(self.session, description="Engineering").read()

    def test_read_half_a_lookup(self) -> None:
        with pytest.raises(ValidationError):
            PosixGroup(self.session).read("cn")

    def test_read_ambiguous(self) -> None:
        seed_group(self.directory, "eng2", 1002, description="Engineering")
        with pytest.raises(IntegrityError):
            PosixGroup(self.session).read("description", "Engineering")

    def test_read_reconciles_pending_values(self) -> None:
        group = PosixGroup(self.session, cn="eng", gidNumber=1000, description="R&D")
        group.read()
        assert group.changes == {"description": Change("Engineering", "R&D")}
        assert group.description == "R&D"

    def test_read_missing_unit(self) -> None:
        self.directory.delete(f"ou=eng,{PEOPLE_BASE}")
        with pytest.raises(ReconciliationError):
            PosixGroup(self.session, cn="eng").read()

    def test_find(self) -> None:
        seed_group(self.directory, "hr", 1001)
        groups = PosixGroup.find(self.session)
        assert sorted(group.name for group in groups) == ["eng", "hr"]
        assert all(group.is_bound for group in groups)
        assert PosixGroup.find(self.session, eq("gidNumber", 1001)) == [
            PosixGroup(self.session, cn="hr")
        ]


class TestEntityWrites:
    def setup_method(self):
        self.session = posix_session()
        self.directory = self.session.transport
        seed_group(self.directory, "eng", 1000, description="Engineering")
        self.group = PosixGroup(self.session, cn="eng").read()

    def test_ledger(self) -> None:
        self.group.description = "R&D"
        assert self.group.changes == {"description": Change("Engineering", "R&D")}
        self.group.description = "Labs"
        assert self.group.changes == {"description": Change("Engineering", "Labs")}
        self.group.description = "Engineering"
        assert self.group.changes == {}

    def test_update(self) -> None:
        self.group.description = "R&D"
        self.group.update()
        assert self.group.changes == {}
        assert self.directory.get(self.group.dn).get_values("description") == ["R&D"]

    def test_update_remove_attribute(self) -> None:
        self.group.description = None
        self.group.update()
        assert self.directory.get(self.group.dn).get_values("description") == []
        assert self.group.description is None

    def test_update_nothing_changed(self, caplog) -> None:
        with caplog.at_level(logging.INFO):
            assert self.group.update() is self.group
        assert self.directory.calls == [
            call for call in self.directory.calls if call[0] == "add"
        ]
        assert "No attributes have changed for eng. Skipping update()." in caplog.text

    def test_update_unbound(self) -> None:
        with pytest.raises(ValidationError):
            PosixGroup(self.session, cn="eng").update()

    def test_update_without_identity(self) -> None:
        with pytest.raises(ValidationError):
            PosixGroup(self.session).update()

    def test_create_bound(self) -> None:
        with pytest.raises(ValidationError):
            self.group.create()

    def test_create_without_identity(self) -> None:
        with pytest.raises(ValidationError):
            PosixGroup(self.session, description="nothing").create()

    def test_create_not_read_back(self) -> None:
        self.session.executor = MagicMock()
        with pytest.raises(ReconciliationError):
            PosixGroup(self.session, cn="hr", gidNumber=1001).create()

    def test_read_or_create(self) -> None:
        hr = PosixGroup(self.session, cn="hr", gidNumber=1001).read_or_create()
        assert hr.is_bound
        again = PosixGroup(self.session, cn="hr", gidNumber=1001).read_or_create()
        assert again.dn == hr.dn
        assert len(self.directory.writes("add")) == 4

    def test_delete(self) -> None:
        self.group.delete()
        assert self.group.is_deleted
        assert not self.directory.exists(f"cn=eng,{GROUP_BASE}")
        assert not self.directory.exists(f"ou=eng,{PEOPLE_BASE}")
        with pytest.raises(ValidationError):
            self.group.description = "gone"
        with pytest.raises(ValidationError):
            self.group.read()
        with pytest.raises(ValidationError):
            self.group.delete()

    def test_rollback_update(self) -> None:
        self.group.description = "R&D"
        self.group.update()
        assert self.group.batch is not None
        self.group.rollback()
        assert self.directory.get(self.group.dn).get_values("description") == ["Engineering"]
        assert self.group.description == "Engineering"
        assert self.group.changes == {}
        assert self.group.batch is None
        with pytest.raises(ValidationError):
            self.group.rollback()

    def test_rollback_create(self) -> None:
        hr = PosixGroup(self.session, cn="hr", gidNumber=1001).create()
        hr.rollback()
        assert not self.directory.exists(f"cn=hr,{GROUP_BASE}")
        assert not self.directory.exists(f"ou=hr,{PEOPLE_BASE}")
        assert not hr.is_bound
        assert hr.pending == {"cn": "hr", "gidNumber": 1001}
        hr.create()
        assert self.directory.exists(f"cn=hr,{GROUP_BASE}")

    def test_rollback_delete(self) -> None:
        self.group.delete()
        self.group.rollback()
        assert not self.group.is_deleted
        assert self.directory.exists(f"cn=eng,{GROUP_BASE}")
        assert self.directory.exists(f"ou=eng,{PEOPLE_BASE}")
        assert self.group.description == "Engineering"

    def test_rollback_without_batch(self) -> None:
        with pytest.raises(ValidationError):
            self.group.rollback()

    def test_rollback_failure(self) -> None:
        self.group.description = "R&D"
        self.group.update()
        self.directory.fail_on("modify", self.group.dn)
        with pytest.raises(RollbackError):
            self.group.rollback()
        assert self.directory.get(self.group.dn).get_values("description") == ["R&D"]

    def test_server_computed_change_is_discarded(self, caplog) -> None:
        alice = PosixUser(
            self.session, uid="alice", uidNumber=2000, gecos="Alice Liddell", group="eng"
        ).create()
        writes = len(self.directory.writes())
        alice.set("pwdChangedTime", "20260101000000Z")
        with caplog.at_level(logging.WARNING):
            alice.update()
        assert "pwdChangedTime can not be written" in caplog.text
        assert alice.changes == {}
        assert alice.get("pwdChangedTime") is None
        assert len(self.directory.writes()) == writes

    def test_dump(self) -> None:
        self.group.description = "R&D"
        dumped = json.loads(self.group.dump())
        assert dumped["type"] == "PosixGroup"
        assert dumped["dn"] == f"cn=eng,{GROUP_BASE}"
        assert dumped["bound"]
        assert dumped["attributes"]["cn"] == "eng"
        assert dumped["attributes"]["gidNumber"] == 1000
        assert dumped["attributes"]["description"] == "R&D"
        assert dumped["changes"] == {"description": {"old": "Engineering", "new": "R&D"}}

    def test_dump_unbound(self) -> None:
        dumped = json.loads(PosixGroup(self.session, cn="hr", gidNumber=1001).dump())
        assert dumped["dn"] is None
        assert not dumped["bound"]
        assert dumped["attributes"] == {"cn": "hr", "gidNumber": 1001}
        assert dumped["changes"] == {}

    def test_plan_unknown_operation(self) -> None:
        with pytest.raises(PlanningError):
            self.group.plan("rename")
