# type: ignore
import logging
import pytest
from loguru import logger
from ldap_class.exceptions import BatchError, IntegrityError
from fake_directory import AD_BASE, DOMAIN_SID, ad_session
from _pytest.logging import caplog as _caplog  # noqa

USERS_BASE = f"CN=Users,{AD_BASE}"


@pytest.fixture
def caplog(_caplog):  # noqa
    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message} {extra}")
    yield _caplog
    logger.remove(handler_id)


class TestIntegration:
    """Whole write cycles against an in-memory Active Directory.

    Every test starts from ``eng`` (primary group of alice), ``staff``
    (primary group of bob) and ``hr`` (no members).
    """

    def setup_method(self):
        self.session = ad_session()
        self.directory = self.session.transport
        self.eng = self.session.ad_group(cn="eng", description="Engineering").create()
        self.staff = self.session.ad_group(cn="staff").create()
        self.hr = self.session.ad_group(cn="hr").create()
        self.alice = self.session.ad_user(
            sAMAccountName="alice", cn="Alice Liddell", group=self.eng, password="s3cret"
        ).create()
        self.bob = self.session.ad_user(
            sAMAccountName="bob", cn="Bob Builder", group="staff", password="s3cret"
        ).create()

    def test_created_entries(self) -> None:
        assert self.eng.dn == f"cn=eng,{AD_BASE}"
        assert self.eng.objectSID == f"{DOMAIN_SID}-{self.eng.gid}"
        assert self.alice.dn == f"cn=Alice Liddell,{USERS_BASE}"
        assert self.alice.displayName == "Alice Liddell"
        assert self.alice.homeDirectory == "\\home\\alice"
        assert self.alice.primaryGroupID == self.eng.gid
        assert self.alice.memberOf == []
        assert self.alice.primary_group() == self.eng
        assert self.eng.primary_members() == [self.alice]
        assert self.eng.secondary_members() == []

    def test_update_without_changes_writes_nothing(self) -> None:
        writes = len(self.directory.writes())
        self.eng.update()
        self.alice.update()
        assert len(self.directory.writes()) == writes

    def test_rename_group_keeps_sid(self, caplog) -> None:
        sid = self.eng.objectSID
        writes = len(self.directory.writes())
        self.eng.cn = "engineering"
        with caplog.at_level(logging.INFO):
            self.eng.update()
        assert self.directory.writes()[writes:] == [
            ("move", f"cn=eng,{AD_BASE}", f"cn=engineering,{AD_BASE}")
        ]
        assert "Renaming group eng to engineering" in caplog.text
        assert self.eng.dn == f"cn=engineering,{AD_BASE}"
        assert self.eng.objectSID == sid
        assert self.session.ad_group(cn="eng").read() is None
        alice = self.session.ad_user(sAMAccountName="alice").read()
        assert alice.primary_group().name == "engineering"

    def test_secondary_membership(self) -> None:
        self.hr.add_member(self.bob)
        self.hr.update()
        assert self.hr.member == [self.bob.dn]
        self.bob.read()
        assert self.bob.memberOf == [self.hr.dn]
        assert self.bob.secondary_groups() == [self.hr]
        self.hr.remove_member(self.bob)
        self.hr.update()
        assert self.hr.member == []
        assert self.bob.read().secondary_groups() == []

    def test_user_side_membership(self) -> None:
        self.alice.add_to_group(self.hr)
        self.alice.update()
        assert self.alice.secondary_groups() == [self.hr]
        self.alice.remove_from_group("hr")
        self.alice.update()
        assert self.alice.secondary_groups() == []

    def test_change_primary_group(self) -> None:
        self.alice.group = self.staff
        self.alice.update()
        assert self.alice.primaryGroupID == self.staff.gid
        assert self.alice.primary_group() == self.staff
        assert self.staff.read().member == []

    def test_failed_write_is_rolled_back(self) -> None:
        before = self.directory.snapshot()
        self.directory.fail_on("modify", self.alice.dn)
        self.alice.group = self.staff
        with pytest.raises(BatchError) as excinfo:
            self.alice.update()
        assert excinfo.value.rolled_back
        assert len(excinfo.value.applied) == 1
        assert excinfo.value.code == 53
        assert self.directory.snapshot() == before

    def test_delete_group_with_members(self) -> None:
        with pytest.raises(IntegrityError):
            self.eng.delete()
        self.hr.add_member(self.alice)
        self.hr.update()
        with pytest.raises(IntegrityError):
            self.hr.delete()

    def test_delete_empty_group(self) -> None:
        hr_dn = self.hr.dn
        self.hr.delete()
        assert not self.directory.exists(hr_dn)

    def test_rename_user(self) -> None:
        self.hr.add_member(self.alice)
        self.hr.update()
        self.alice.cn = "Alice L"
        self.alice.update()
        assert self.alice.dn == f"cn=Alice L,{USERS_BASE}"
        assert self.hr.read().member == [self.alice.dn]

    def test_delete_user(self) -> None:
        self.hr.add_member(self.alice)
        self.hr.update()
        alice_dn = self.alice.dn
        self.alice.delete()
        assert not self.directory.exists(alice_dn)
        assert self.hr.read().member == []

    def test_profile_attributes(self) -> None:
        self.alice.homeDrive = "H:"
        self.alice.profilePath = "\\\\fs\\profiles\\alice"
        self.alice.update()
        alice = self.session.ad_user(sAMAccountName="alice").read()
        assert alice.homeDrive == "H:"
        assert alice.profilePath == "\\\\fs\\profiles\\alice"

    def test_has_user(self) -> None:
        assert self.eng.has_user(self.alice)
        assert self.eng.has_user("ALICE")
        assert not self.eng.has_user(self.bob)
        self.hr.add_member(self.bob)
        self.hr.update()
        assert self.hr.has_user("bob")

    def test_server_computed_change_is_discarded(self) -> None:
        sid = self.eng.objectSID
        writes = len(self.directory.writes())
        self.eng.set("objectSID", f"{DOMAIN_SID}-9999")
        self.eng.update()
        assert self.eng.changes == {}
        assert self.eng.objectSID == sid
        assert len(self.directory.writes()) == writes

    def test_rollback_rename(self) -> None:
        before = self.directory.snapshot()
        self.eng.cn = "engineering"
        self.eng.update()
        self.eng.rollback()
        assert self.directory.snapshot() == before
        assert self.eng.dn == f"cn=eng,{AD_BASE}"
