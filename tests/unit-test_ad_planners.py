# type: ignore
import pytest
from ldap_class.actions import Add, Delete, Move, Update
from ldap_class.exceptions import IntegrityError, MissingAttributeError, PlanningError
from ldap_class.utils.passwords import encode_ad_password
from fake_directory import AD_BASE, ad_session

USERS_BASE = f"CN=Users,{AD_BASE}"


class TestAdGroupPlanner:
    def setup_method(self):
        self.session = ad_session()
        self.eng = self.session.ad_group(cn="eng", description="Engineering").create()

    def test_plan_create(self) -> None:
        plan = self.session.ad_group(cn="hr", description="Human resources").plan("create")
        assert list(plan) == [
            Add(
                f"cn=hr,{AD_BASE}",
                {"objectClass": ["top", "group"], "cn": "hr", "description": "Human resources"},
            )
        ]

    def test_plan_create_without_cn(self) -> None:
        with pytest.raises(MissingAttributeError):
            self.session.ad_group(description="nameless").plan("create")

    def test_created_group_has_a_token(self) -> None:
        assert self.eng.gid == 1100
        assert self.eng.objectSID.endswith("-1100")

    def test_plan_update(self) -> None:
        self.eng.description = "R&D"
        assert list(self.eng.plan("update")) == [
            Update(self.eng.dn, {"description": "R&D"})
        ]

    def test_plan_rename_is_a_move(self) -> None:
        self.eng.cn = "engineering"
        assert list(self.eng.plan("update")) == [
            Move(self.eng.dn, f"cn=engineering,{AD_BASE}")
        ]

    def test_plan_rename_with_other_changes(self) -> None:
        self.eng.cn = "engineering"
        self.eng.description = "R&D"
        assert list(self.eng.plan("update")) == [
            Update(self.eng.dn, {"description": "R&D"}),
            Move(self.eng.dn, f"cn=engineering,{AD_BASE}"),
        ]

    def test_plan_rename_to_existing_group(self) -> None:
        self.session.ad_group(cn="hr").create()
        self.eng.cn = "hr"
        with pytest.raises(PlanningError):
            self.eng.plan("update")

    def test_plan_delete(self) -> None:
        assert list(self.eng.plan("delete")) == [Delete(self.eng.dn)]

    def test_plan_delete_with_primary_member(self) -> None:
        self.session.ad_user(
            sAMAccountName="alice", cn="Alice Liddell", group=self.eng, password="x"
        ).create()
        with pytest.raises(IntegrityError) as excinfo:
            self.eng.plan("delete")
        assert "alice" in str(excinfo.value)


class TestAdUserPlanner:
    def setup_method(self):
        self.session = ad_session()
        self.eng = self.session.ad_group(cn="eng").create()
        self.staff = self.session.ad_group(cn="staff").create()
        self.alice = self.session.ad_user(
            sAMAccountName="alice", cn="Alice Liddell", group=self.eng
        ).create()

    def test_plan_create(self) -> None:
        bob = self.session.ad_user(
            sAMAccountName="bob", cn="Bob Builder", group="staff", password="secret"
        )
        bob_dn = f"cn=Bob Builder,{USERS_BASE}"
        plan = bob.plan("create")
        assert [action.verb for action in plan] == ["add", "update", "update"]
        attributes = plan[0].attributes
        assert plan[0].dn == bob_dn
        assert attributes["objectClass"] == ["top", "person", "organizationalPerson", "user"]
        assert attributes["givenName"] == "Bob"
        assert attributes["sn"] == "Builder"
        assert attributes["displayName"] == "Bob Builder"
        assert attributes["homeDirectory"] == "\\home\\bob"
        assert attributes["unicodePwd"] == encode_ad_password("secret")
        assert "primaryGroupID" not in attributes
        assert "mail" not in attributes
        assert plan[1] == Update(self.staff.dn, {"member": [bob_dn]})
        assert plan[2] == Update(bob_dn, {"primaryGroupID": self.staff.gid})

    def test_plan_create_from_display_name(self) -> None:
        plan = self.session.ad_user(
            sAMAccountName="bob", displayName="Bob Builder", password="x"
        ).plan("create")
        assert len(plan) == 1
        assert plan[0].dn == f"cn=Bob Builder,{USERS_BASE}"
        assert plan[0].attributes["cn"] == "Bob Builder"

    def test_plan_create_primary_also_secondary(self) -> None:
        plan = self.session.ad_user(
            sAMAccountName="bob", cn="Bob", group="staff", groups=["staff"], password="x"
        ).plan("create")
        assert [action.verb for action in plan] == ["add", "update", "update"]

    def test_plan_create_with_primary_group_id(self) -> None:
        with pytest.raises(PlanningError):
            self.session.ad_user(
                sAMAccountName="bob", cn="Bob", primaryGroupID=self.staff.gid, password="x"
            ).plan("create")

    def test_plan_create_without_name(self) -> None:
        with pytest.raises(MissingAttributeError):
            self.session.ad_user(sAMAccountName="bob", password="x").plan("create")

    def test_plan_create_without_password(self) -> None:
        with pytest.raises(MissingAttributeError):
            self.session.ad_user(sAMAccountName="bob", cn="Bob").plan("create")

    def test_created_user(self) -> None:
        assert self.alice.primaryGroupID == self.eng.gid
        assert self.alice.primary_group() == self.eng
        assert self.alice.last_password is not None
        # primary membership is not listed in member
        assert self.session.transport.get(self.eng.dn).get_values("member") == []

    def test_plan_update_cleared_attribute_is_derived(self) -> None:
        self.alice.displayName = None
        assert list(self.alice.plan("update")) == [
            Update(self.alice.dn, {"displayName": "Alice Liddell"})
        ]

    def test_plan_update_primary_group(self) -> None:
        self.alice.group = self.staff
        assert list(self.alice.plan("update")) == [
            Update(self.staff.dn, {"member": [self.alice.dn]}),
            Update(self.alice.dn, {"primaryGroupID": self.staff.gid}),
        ]

    def test_plan_update_secondary_groups(self) -> None:
        self.alice.groups = ["staff"]
        assert list(self.alice.plan("update")) == [
            Update(self.staff.dn, {"member": [self.alice.dn]})
        ]

    def test_plan_update_rename(self) -> None:
        self.alice.cn = "Alice L"
        assert list(self.alice.plan("update")) == [
            Move(self.alice.dn, f"cn=Alice L,{USERS_BASE}")
        ]

    def test_plan_delete(self) -> None:
        assert list(self.alice.plan("delete")) == [Delete(self.alice.dn)]
